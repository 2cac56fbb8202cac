import hmac

from django.conf import settings


def maintenance_token_valid(request):
    """True when the request carries the configured admin maintenance token.

    Accepts `Authorization: Bearer <token>` or `?token=<token>`. An unset
    ADMIN_MAINT_TOKEN rejects everything.
    """
    expected = settings.ADMIN_MAINT_TOKEN or ''
    if not expected:
        return False

    supplied = ''
    authorization = request.headers.get('Authorization', '')
    if authorization.lower().startswith('bearer '):
        supplied = authorization.split(' ', 1)[1].strip()
    if not supplied:
        supplied = request.query_params.get('token', '')

    return hmac.compare_digest(supplied.encode(), expected.encode())
