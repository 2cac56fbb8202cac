import base64
import hashlib
import json
import os
from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import urlsplit

import pytest
import requests
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from django.utils import timezone

from ghl_accounts.models import GHLAuthCredentials, LocationSummary
from ghl_accounts.utils import GHLClient
from user_context.crypto import evp_bytes_to_key

AGENCY_ID = 'agency-1'
LOCATION_ID = 'loc-1'
INTEGRATION_ID = 'app-integration-123456'
MAINT_TOKEN = 'maint-secret'
SHARED_SECRET = 'shared-secret'
MENU_URL = 'https://admin.driving4dollars.co/app'


@dataclass
class RecordedCall:
    method: str
    path: str
    kwargs: dict


def make_response(status=200, body=None, text=None, url='https://ghl.test/'):
    response = requests.Response()
    response.status_code = status
    response.reason = 'OK' if status < 400 else 'Error'
    response.url = url
    response.encoding = 'utf-8'
    if body is not None:
        response._content = json.dumps(body).encode('utf-8')
        response.headers['Content-Type'] = 'application/json'
    else:
        response._content = (text or '').encode('utf-8')
    return response


class FakeUpstream:
    """Stands in for the `requests` session; routes on (method, path)."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, status=200, body=None, text=None, exc=None):
        self.routes.setdefault((method, path), []).append((status, body, text, exc))
        return self

    def request(self, method, url, **kwargs):
        path = urlsplit(url).path
        self.calls.append(RecordedCall(method, path, kwargs))
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"unexpected upstream call {method} {path}")
        status, body, text, exc = queue.pop(0) if len(queue) > 1 else queue[0]
        if exc is not None:
            raise exc
        return make_response(status, body, text, url)

    def called(self, method, path):
        return [c for c in self.calls if c.method == method and c.path == path]


@pytest.fixture(autouse=True)
def ghl_settings(settings):
    settings.GHL_CLIENT_ID = 'client-id'
    settings.GHL_CLIENT_SECRET = 'client-secret'
    settings.GHL_SHARED_SECRET_KEY = SHARED_SECRET
    settings.GHL_INTEGRATION_ID = INTEGRATION_ID
    settings.GHL_API_BASE = 'https://ghl.test'
    settings.GHL_TOKEN_REFRESH_MARGIN = 60
    settings.ADMIN_MAINT_TOKEN = MAINT_TOKEN
    settings.APP_BASE_URL = 'https://app.test'
    settings.D4D_MENU_TITLE = 'Driving for Dollars'
    settings.D4D_MENU_URL = MENU_URL
    return settings


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def patched_requests(upstream, monkeypatch):
    """Route the default GHLClient transport (the requests module) to the fake."""
    monkeypatch.setattr(requests, 'request', upstream.request)
    return upstream


@pytest.fixture
def ghl_client(upstream):
    return GHLClient(session=upstream, base_url='https://ghl.test', timeout=2)


@pytest.fixture
def now():
    return timezone.now().replace(microsecond=0)


@pytest.fixture
def make_credentials(now):
    def _make(scope_type=GHLAuthCredentials.SCOPE_AGENCY, scope_id=AGENCY_ID, expires_in=3600, **fields):
        values = {
            'access_token': 'access-1',
            'refresh_token': 'refresh-1',
            'expires_at': now + timedelta(seconds=expires_in),
            'scope': 'custom-menu-link.readonly custom-menu-link.write',
        }
        values.update(fields)
        return GHLAuthCredentials.objects.create(scope_type=scope_type, scope_id=scope_id, **values)
    return _make


@pytest.fixture
def make_location():
    def _make(location_id=LOCATION_ID, agency_id=AGENCY_ID, is_installed=True):
        return LocationSummary.objects.create(
            location_id=location_id,
            agency_id=agency_id,
            is_installed=is_installed,
            installed_at=timezone.now() if is_installed else None,
        )
    return _make


def _b64url(value):
    return base64.urlsafe_b64encode(value).rstrip(b'=').decode('ascii')


@pytest.fixture
def seal_structured():
    def _seal(record, secret=SHARED_SECRET):
        key = hashlib.sha256(secret.encode('utf-8')).digest()
        iv = os.urandom(12)
        sealed = AESGCM(key).encrypt(iv, json.dumps(record).encode('utf-8'), None)
        return {'iv': _b64url(iv), 'cipherText': _b64url(sealed[:-16]), 'tag': _b64url(sealed[-16:])}
    return _seal


@pytest.fixture
def seal_cryptojs():
    def _seal(record, secret=SHARED_SECRET):
        salt = os.urandom(8)
        key, iv = evp_bytes_to_key(secret.encode('utf-8'), salt)
        padder = padding.PKCS7(128).padder()
        data = padder.update(json.dumps(record).encode('utf-8')) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        body = encryptor.update(data) + encryptor.finalize()
        return base64.b64encode(b'Salted__' + salt + body).decode('ascii')
    return _seal
