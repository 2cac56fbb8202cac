"""
HTTP access to the GoHighLevel (LeadConnector) v2 API.

Every upstream call goes through GHLClient so that headers, the API version,
the request timeout and error extraction are applied the same way. Response
shapes vary between endpoints (bare arrays vs. wrapped lists, several id
field names); normalize_locations / normalize_menus turn them into typed
records once so callers never branch on shape.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

import requests
from django.conf import settings

from .exceptions import UpstreamRejected

logger = logging.getLogger(__name__)

CML_READ_SCOPE = "custom-menu-link.readonly"
CML_WRITE_SCOPE = "custom-menu-link.write"

LOCATION_ID_FIELDS = ("id", "_id", "locationId")
COMPANY_LOCATIONS_PAGE_SIZE = 200


def ghl_headers(access_token=None, extra=None):
    headers = {
        "Accept": "application/json",
        "Version": settings.GHL_API_VERSION,
    }
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    if extra:
        headers.update(extra)
    return headers


def scope_list(scope):
    """Split a token `scope` string (space or comma separated) into a list."""
    return [s for s in re.split(r"[,\s]+", scope or "") if s]


def clean_string(value):
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_json(response):
    try:
        return response.json()
    except ValueError:
        return None


def error_message(response):
    """Human readable message from a failed GHL response body."""
    payload = parse_json(response)
    if isinstance(payload, dict):
        for key in ("message", "error_description", "error"):
            value = payload.get(key)
            if isinstance(value, list):
                value = "; ".join(str(v) for v in value)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = (response.text or "").strip()
    return text[:300] or response.reason or f"HTTP {response.status_code}"


@dataclass(frozen=True)
class LocationEntry:
    location_id: str
    name: Optional[str] = None
    is_installed: bool = True


@dataclass(frozen=True)
class CustomMenu:
    id: Optional[str]
    title: str
    url: str
    raw: dict = field(default_factory=dict, compare=False, repr=False)


def _unwrap_items(payload, key):
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key]
    return []


def normalize_locations(payload, installed_default=True) -> list[LocationEntry]:
    """`{locations: [...]}` or a bare array -> LocationEntry list.

    Items without any usable identifier are dropped; the identifier is taken
    from `id`, `_id` then `locationId`. Items without `isInstalled` get
    `installed_default`.
    """
    entries = []
    for item in _unwrap_items(payload, "locations"):
        if not isinstance(item, dict):
            continue
        location_id = next(
            (value for value in (clean_string(item.get(k)) for k in LOCATION_ID_FIELDS) if value),
            None,
        )
        if not location_id:
            continue
        entries.append(LocationEntry(
            location_id=location_id,
            name=clean_string(item.get("name")),
            is_installed=bool(item.get("isInstalled", installed_default)),
        ))
    return entries


def normalize_menus(payload) -> list[CustomMenu]:
    """`{items: [...]}` or a bare array -> CustomMenu list."""
    menus = []
    for item in _unwrap_items(payload, "items"):
        if not isinstance(item, dict):
            continue
        menus.append(CustomMenu(
            id=clean_string(item.get("id")),
            title=item.get("title") if isinstance(item.get("title"), str) else "",
            url=item.get("url") if isinstance(item.get("url"), str) else "",
            raw=item,
        ))
    return menus


class GHLClient:
    """Thin synchronous client for the GHL endpoints this app consumes.

    `session` is anything exposing `request(method, url, **kwargs)`; the
    `requests` module itself by default. Timeouts and connection errors are
    reported as UpstreamRejected with no status.
    """

    def __init__(self, session=None, base_url=None, timeout=None, logger=None):
        self.session = session or requests
        self.base_url = (base_url or settings.GHL_API_BASE).rstrip("/")
        self.timeout = timeout or settings.GHL_HTTP_TIMEOUT
        self.logger = logger or logging.getLogger(__name__)

    def request(self, method, path, access_token=None, params=None, json=None, data=None, headers=None):
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(
                method,
                url,
                headers=ghl_headers(access_token, headers),
                params=params,
                json=json,
                data=data,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self.logger.warning(f"GHL {method} {path} transport error: {e}")
            raise UpstreamRejected(None, f"GHL {method} {path} failed: {e}")

    def call(self, method, path, **kwargs) -> Any:
        """Perform a request and return the parsed JSON body, raising on non-2xx."""
        response = self.request(method, path, **kwargs)
        if not response.ok:
            message = error_message(response)
            self.logger.warning(f"GHL {method} {path} failed {response.status_code}: {message}")
            raise UpstreamRejected(response.status_code, message)
        return parse_json(response)

    def exchange_token(self, form):
        """POST /oauth/token with a form-encoded grant."""
        payload = self.call(
            "POST",
            "/oauth/token",
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not isinstance(payload, dict) or not clean_string(payload.get("access_token")):
            raise UpstreamRejected(200, "Token response missing access_token")
        return payload

    def reconnect(self, client_key, client_secret, company_id):
        """POST /oauth/reconnect, returning a fresh authorization code."""
        payload = self.call(
            "POST",
            "/oauth/reconnect",
            json={"clientKey": client_key, "clientSecret": client_secret, "companyId": company_id},
        )
        code = clean_string(payload.get("authorizationCode")) if isinstance(payload, dict) else None
        if not code:
            raise UpstreamRejected(200, "Reconnect response missing authorizationCode")
        return code

    def installed_locations(self, access_token, company_id, app_id) -> list[LocationEntry]:
        payload = self.call(
            "GET",
            "/oauth/installedLocations",
            access_token=access_token,
            params={"companyId": company_id, "appId": app_id, "isInstalled": "true"},
        )
        return normalize_locations(payload)

    def company_locations(self, access_token, company_id, page=1, limit=COMPANY_LOCATIONS_PAGE_SIZE):
        """One page of every location under the company, installed or not."""
        payload = self.call(
            "GET",
            f"/companies/{quote(company_id, safe='')}/locations",
            access_token=access_token,
            params={"page": page, "limit": limit},
        )
        return normalize_locations(payload, installed_default=False)

    def mint_location_token(self, access_token, company_id, location_id):
        """POST /oauth/locationToken with the agency token; returns the token body.

        Some responses wrap the tokens in `data`; that wrapper is removed here.
        """
        payload = self.call(
            "POST",
            "/oauth/locationToken",
            access_token=access_token,
            json={"companyId": company_id, "locationId": location_id},
            headers={"Content-Type": "application/json"},
        )
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            raise UpstreamRejected(200, "Location token response is not an object")
        return payload

    def list_custom_menus(self, access_token, company_id) -> list[CustomMenu]:
        payload = self.call(
            "GET",
            "/custom-menus/",
            access_token=access_token,
            params={"companyId": company_id},
        )
        return normalize_menus(payload)

    def create_custom_menu(self, access_token, company_id, body):
        """Create a custom menu link; companyId goes in the query, never the body."""
        payload = self.call(
            "POST",
            "/custom-menus/",
            access_token=access_token,
            params={"companyId": company_id},
            json=body,
            headers={"Content-Type": "application/json"},
        )
        if not isinstance(payload, dict):
            return None
        return clean_string(payload.get("id")) or clean_string((payload.get("data") or {}).get("id"))

    def delete_custom_menu(self, access_token, menu_id):
        """Delete a custom menu link. A 404 counts as already deleted."""
        path = f"/custom-menus/{quote(menu_id, safe='')}"
        response = self.request("DELETE", path, access_token=access_token)
        if response.status_code == 404:
            self.logger.info(f"custom menu {menu_id} delete -> 404 (already gone)")
            return True
        if not response.ok:
            message = error_message(response)
            self.logger.warning(f"custom menu {menu_id} delete failed {response.status_code}: {message}")
            raise UpstreamRejected(response.status_code, message)
        self.logger.info(f"custom menu {menu_id} delete -> {response.status_code}")
        return True
