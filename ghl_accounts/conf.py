from dataclasses import dataclass

from django.conf import settings

from .exceptions import ConfigMissing


@dataclass(frozen=True)
class GHLConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    integration_id: str
    app_base_url: str


def required_setting(name):
    value = getattr(settings, name, '') or ''
    if not str(value).strip():
        raise ConfigMissing(name)
    return str(value).strip()


def get_ghl_config():
    """Return the OAuth client configuration, raising ConfigMissing when incomplete."""
    base_app = (settings.APP_BASE_URL or '').rstrip('/')
    return GHLConfig(
        client_id=required_setting('GHL_CLIENT_ID'),
        client_secret=required_setting('GHL_CLIENT_SECRET'),
        redirect_uri=f"{base_app}{settings.GHL_REDIRECT_PATH}",
        integration_id=(settings.GHL_INTEGRATION_ID or '').strip(),
        app_base_url=base_app,
    )
