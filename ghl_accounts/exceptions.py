from rest_framework import status
from rest_framework.exceptions import APIException


class GHLIntegrationError(APIException):
    """Base class for GHL integration failures surfaced through DRF views.

    `detail` is kept as a plain dict so booleans and upstream status codes
    reach the JSON body with their types intact.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'GHL integration error.'
    default_code = 'ghl_error'

    def __init__(self, detail=None):
        super().__init__()
        if detail is not None:
            self.detail = detail


class ConfigMissing(GHLIntegrationError):
    """A required secret or credential is not configured. Never retried."""
    default_code = 'server_misconfigured'

    def __init__(self, key):
        self.key = key
        super().__init__({'error': f"Server not configured ({key})"})


class NoRefreshToken(GHLIntegrationError):
    """The scope never completed OAuth or was disconnected."""
    status_code = status.HTTP_409_CONFLICT
    default_code = 'needs_reconnection'

    def __init__(self, scope_type, scope_id):
        self.scope_type = scope_type
        self.scope_id = scope_id
        super().__init__({
            'error': f"No refresh token for {scope_type} {scope_id}; needs reconnection",
            'needsReconnection': True,
        })


class UpstreamRejected(GHLIntegrationError):
    """The GHL API failed at the network level or answered non-2xx."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = 'upstream_rejected'

    def __init__(self, upstream_status, message):
        self.upstream_status = upstream_status
        self.message = message
        super().__init__({
            'error': message,
            'upstreamStatus': upstream_status,
        })

    def __str__(self):
        return f"GHL upstream rejected ({self.upstream_status}): {self.message}"
