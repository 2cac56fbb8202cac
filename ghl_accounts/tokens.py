"""
OAuth token lifecycle against the GHL token endpoint.

Tokens are refreshed lazily: a cached access token is used until it is
within the refresh margin of its expiry. Concurrent refreshes for the same
scope are not locked out; the last writer wins and a stale refresh token
heals on the next rotation.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

from .conf import get_ghl_config
from .exceptions import NoRefreshToken, UpstreamRejected
from .models import GHLAuthCredentials
from .store import UNSET, CredentialPatch, LocationStore, TokenStore
from .utils import GHLClient, clean_string, scope_list

logger = logging.getLogger(__name__)

AGENCY = GHLAuthCredentials.SCOPE_AGENCY
LOCATION = GHLAuthCredentials.SCOPE_LOCATION

# Lifetime assumed when a token response carries no usable expires_in
DEFAULT_TOKEN_LIFETIME = 3600

USER_TYPE_FOR_SCOPE = {
    AGENCY: 'Company',
    LOCATION: 'Location',
}


@dataclass
class TokenGrant:
    """Parsed body of a successful /oauth/token response."""
    access_token: str
    refresh_token: Optional[str]
    expires_in: Optional[int]
    scope: str = ''
    user_type: Optional[str] = None
    company_id: Optional[str] = None
    location_id: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_response(cls, payload):
        try:
            expires_in = int(payload.get('expires_in') or 0)
        except (TypeError, ValueError):
            expires_in = 0
        # None marks a missing or unusable lifetime; expires_at() substitutes the default
        return cls(
            access_token=payload['access_token'].strip(),
            refresh_token=clean_string(payload.get('refresh_token')),
            expires_in=expires_in if expires_in > 0 else None,
            scope=payload.get('scope') or '',
            user_type=clean_string(payload.get('userType')),
            company_id=clean_string(payload.get('companyId')),
            location_id=clean_string(payload.get('locationId')),
            user_id=clean_string(payload.get('userId')),
        )

    @property
    def scopes(self):
        return scope_list(self.scope)

    def expires_at(self, now, default=DEFAULT_TOKEN_LIFETIME):
        return now + timedelta(seconds=self.expires_in or default)


class TokenManager:
    """Hands out valid access tokens per (scope_type, scope_id)."""

    def __init__(self, store=None, locations=None, client=None, logger=None, clock=None, refresh_margin=None):
        self.logger = logger or logging.getLogger(__name__)
        self.store = store or TokenStore(logger=self.logger)
        self.locations = locations or LocationStore()
        self.client = client or GHLClient(logger=self.logger)
        self.clock = clock or timezone.now
        if refresh_margin is None:
            refresh_margin = settings.GHL_TOKEN_REFRESH_MARGIN
        self.refresh_margin = timedelta(seconds=refresh_margin)

    def get_valid_access_token(self, scope_type, scope_id):
        """Return a usable access token, refreshing and persisting it if needed.

        Raises NoRefreshToken without touching the network when the scope has
        no stored refresh token, and UpstreamRejected when the refresh fails.
        """
        record = self.store.get(scope_type, scope_id)
        if record is None or not record.refresh_token:
            self.logger.info(f"no refresh token stored for {scope_type} {scope_id}")
            raise NoRefreshToken(scope_type, scope_id)

        now = self.clock()
        if record.access_token and record.expires_at and record.expires_at > now + self.refresh_margin:
            return record.access_token

        return self.refresh(record).access_token

    def refresh(self, record):
        """Exchange the record's refresh token for a new access token."""
        config = get_ghl_config()
        form = {
            'grant_type': 'refresh_token',
            'refresh_token': record.refresh_token,
            'client_id': config.client_id,
            'client_secret': config.client_secret,
            'user_type': USER_TYPE_FOR_SCOPE[record.scope_type],
        }
        try:
            payload = self.client.exchange_token(form)
        except UpstreamRejected as e:
            self.logger.warning(
                f"token refresh rejected for {record.scope_type} {record.scope_id}: "
                f"{e.upstream_status} {e.message}"
            )
            raise

        grant = TokenGrant.from_response(payload)
        updated = self.store.upsert(record.scope_type, record.scope_id, CredentialPatch(
            access_token=grant.access_token,
            expires_at=self._expiry(grant, f"{record.scope_type} {record.scope_id}"),
            refresh_token=grant.refresh_token or UNSET,
            scope=grant.scope or UNSET,
        ))
        self.logger.info(
            f"token refreshed for {record.scope_type} {record.scope_id} "
            f"(rotated={bool(grant.refresh_token)}, expires_in={grant.expires_in})"
        )
        return updated

    def _expiry(self, grant, subject):
        if grant.expires_in is None:
            self.logger.warning(
                f"token response for {subject} has no usable expires_in; "
                f"assuming {DEFAULT_TOKEN_LIFETIME}s"
            )
        return grant.expires_at(self.clock())

    def get_agency_access_token(self, agency_id):
        """Agency token or None when the agency cannot currently be authorized."""
        try:
            return self.get_valid_access_token(AGENCY, agency_id)
        except (NoRefreshToken, UpstreamRejected) as e:
            self.logger.info(f"agency token unavailable for {agency_id}: {e}")
            return None

    def exchange_authorization_code(self, code, user_type=None):
        """Redeem an authorization code and persist the resulting credentials.

        Company-scoped grants create/update the agency record; location-scoped
        grants create/update the location record and mark it installed.
        """
        config = get_ghl_config()
        form = {
            'grant_type': 'authorization_code',
            'code': code,
            'client_id': config.client_id,
            'client_secret': config.client_secret,
            'redirect_uri': config.redirect_uri,
        }
        if user_type:
            form['user_type'] = user_type

        grant = TokenGrant.from_response(self.client.exchange_token(form))
        self.persist_grant(grant)
        return grant

    def persist_grant(self, grant):
        patch = CredentialPatch(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or UNSET,
            expires_at=self._expiry(grant, grant.location_id or grant.company_id),
            company_id=grant.company_id or UNSET,
            scope=grant.scope,
            user_id=grant.user_id or UNSET,
            user_type=grant.user_type or UNSET,
        )

        if grant.location_id:
            record = self.store.upsert(LOCATION, grant.location_id, patch)
            self.locations.upsert(grant.location_id, agency_id=grant.company_id, is_installed=True)
        elif grant.company_id:
            record = self.store.upsert(AGENCY, grant.company_id, patch)
        else:
            raise UpstreamRejected(200, "Token response has neither companyId nor locationId")

        self.logger.info(
            f"oauth grant stored for {record.scope_type} {record.scope_id} "
            f"(scopes={len(grant.scopes)})"
        )
        return record

    def mint_location_credentials(self, agency_id, agency_access_token, location_id):
        """Derive and store a location token from the agency token.

        Returns the stored Location record, or None when the mint is refused or
        the response carries no refresh token.
        """
        try:
            payload = self.client.mint_location_token(agency_access_token, agency_id, location_id)
        except UpstreamRejected as e:
            self.logger.warning(f"location token mint failed for {location_id} ({agency_id}): {e}")
            return None

        refresh_token = clean_string(payload.get('refresh_token'))
        if not refresh_token:
            self.logger.warning(f"location token mint for {location_id} returned no refresh_token")
            return None

        patch = CredentialPatch(
            refresh_token=refresh_token,
            company_id=agency_id,
            scope=clean_string(payload.get('scope')) or UNSET,
            user_type=USER_TYPE_FOR_SCOPE[LOCATION],
        )
        if clean_string(payload.get('access_token')):
            grant = TokenGrant.from_response(payload)
            patch.access_token = grant.access_token
            patch.expires_at = self._expiry(grant, f"{LOCATION} {location_id}")
        record = self.store.upsert(LOCATION, location_id, patch)
        self.locations.upsert(location_id, agency_id=agency_id, is_installed=True)
        self.logger.info(f"location token minted for {location_id} ({agency_id})")
        return record

    def reconnect_company(self, company_id):
        """Re-derive a full agency token set through /oauth/reconnect.

        Only for maintenance use, when the stored agency refresh token is gone
        or revoked.
        """
        config = get_ghl_config()
        code = self.client.reconnect(config.client_id, config.client_secret, company_id)
        form = {
            'grant_type': 'authorization_code',
            'code': code,
            'client_id': config.client_id,
            'client_secret': config.client_secret,
            'redirect_uri': config.redirect_uri,
            'user_type': 'Company',
        }
        grant = TokenGrant.from_response(self.client.exchange_token(form))
        grant.company_id = grant.company_id or company_id
        # A reconnect always yields a company token, whatever else the body says
        grant.location_id = None
        record = self.persist_grant(grant)
        self.logger.info(f"company {company_id} reconnected")
        return record
