"""
Decryption of the SSO user context GHL hands to embedded pages.

GHL delivers the context in one of two shapes:

* structured: ``{"iv": ..., "cipherText": ..., "tag": ...}``, URL-safe base64
  parts of an AES-256-GCM message keyed by sha256(shared secret);
* opaque: a single CryptoJS passphrase string (OpenSSL ``Salted__`` header,
  MD5 EVP_BytesToKey, AES-256-CBC, PKCS7).

decode_context never raises on bad input; an undecryptable payload gives a
context with every field None, which callers treat as unauthenticated.
"""
import base64
import binascii
import hashlib
import json
import logging
from dataclasses import asdict, dataclass, fields
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

OPENSSL_SALT_HEADER = b"Salted__"

CANONICAL_ALIASES = {
    "userId": ("userId", "id"),
    "companyId": ("companyId", "agencyId", "company", "agency"),
    "role": ("role", "userRole"),
    "type": ("type",),
    "activeLocationId": ("activeLocation", "activeLocationId", "locationId"),
    "userName": ("userName", "name"),
    "email": ("email",),
}


class DecodeFailure(Exception):
    """Payload could not be decrypted or did not hold a JSON object."""


@dataclass(frozen=True)
class StructuredCipher:
    iv: str
    cipher_text: str
    tag: str


@dataclass(frozen=True)
class OpaqueCipher:
    value: str


EncryptedPayload = Union[StructuredCipher, OpaqueCipher]


@dataclass(frozen=True)
class SSOContext:
    userId: Optional[str] = None
    companyId: Optional[str] = None
    role: Optional[str] = None
    type: Optional[str] = None
    activeLocationId: Optional[str] = None
    userName: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_empty(self):
        return all(getattr(self, f.name) is None for f in fields(self))

    def as_dict(self):
        return asdict(self)


def parse_payload(raw) -> Optional[EncryptedPayload]:
    """Classify the inbound `encryptedData` value; None when it is neither shape."""
    if isinstance(raw, str) and raw.strip():
        return OpaqueCipher(raw.strip())
    if isinstance(raw, dict):
        parts = (raw.get("iv"), raw.get("cipherText"), raw.get("tag"))
        if all(isinstance(p, str) and p for p in parts):
            return StructuredCipher(*parts)
    return None


def b64url_decode(value):
    value = value.strip().replace("-", "+").replace("_", "/")
    return base64.b64decode(value + "=" * (-len(value) % 4))


def evp_bytes_to_key(passphrase, salt, key_len=32, iv_len=16):
    """OpenSSL EVP_BytesToKey with MD5 and one iteration, as CryptoJS uses."""
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def decrypt_structured(payload: StructuredCipher, secret: str) -> bytes:
    key = hashlib.sha256(secret.encode("utf-8")).digest()
    try:
        iv = b64url_decode(payload.iv)
        data = b64url_decode(payload.cipher_text) + b64url_decode(payload.tag)
        return AESGCM(key).decrypt(iv, data, None)
    except (binascii.Error, ValueError, InvalidTag) as e:
        raise DecodeFailure(f"structured payload rejected: {type(e).__name__}") from e


def decrypt_opaque(payload: OpaqueCipher, secret: str) -> bytes:
    try:
        blob = base64.b64decode(payload.value, validate=False)
    except (binascii.Error, ValueError) as e:
        raise DecodeFailure("opaque payload is not base64") from e
    if not blob.startswith(OPENSSL_SALT_HEADER) or len(blob) < 32:
        raise DecodeFailure("opaque payload missing salt header")

    salt, body = blob[8:16], blob[16:]
    if len(body) % 16:
        raise DecodeFailure("opaque payload is not block aligned")
    key, iv = evp_bytes_to_key(secret.encode("utf-8"), salt)

    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(body) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecodeFailure("opaque payload has bad padding (wrong secret?)") from e


def load_record(plaintext: bytes) -> dict:
    try:
        record = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeFailure("decrypted payload is not JSON") from e
    if not isinstance(record, dict):
        raise DecodeFailure("decrypted payload is not an object")
    return record


def pick_string(record, keys):
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def normalize(record: dict) -> SSOContext:
    return SSOContext(**{
        canonical: pick_string(record, aliases)
        for canonical, aliases in CANONICAL_ALIASES.items()
    })


def decrypt(payload: EncryptedPayload, secret: str) -> dict:
    if isinstance(payload, StructuredCipher):
        return load_record(decrypt_structured(payload, secret))
    return load_record(decrypt_opaque(payload, secret))


def decode_context(raw, secret, logger=None) -> SSOContext:
    """Decrypt and normalize an SSO payload. Never raises on bad payloads."""
    logger = logger or logging.getLogger(__name__)
    payload = parse_payload(raw)
    if payload is None:
        logger.info("sso decode: unrecognized payload shape")
        return SSOContext()

    try:
        record = decrypt(payload, secret)
    except DecodeFailure as e:
        logger.info(f"sso decrypt failed ({type(payload).__name__}): {e}")
        return SSOContext()

    logger.info(f"sso decode keys: {sorted(record)[:30]}")
    context = normalize(record)
    logger.info(
        f"sso normalized: userId={bool(context.userId)} role={bool(context.role)} "
        f"companyId={bool(context.companyId)} activeLocation={bool(context.activeLocationId)}"
    )
    return context
