import base64
import binascii
import hmac
import logging
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from django.http import HttpResponseRedirect
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .conf import get_ghl_config
from .exceptions import UpstreamRejected
from .installs import InstalledLocationReconciler
from .menus import MenuLifecycleManager
from .permissions import maintenance_token_valid
from .serializers import (
    AgencyLocationSerializer,
    CompanyReconnectSerializer,
    MarketplaceWebhookSerializer,
    MenuCleanupSerializer,
)
from .store import LocationStore, TokenStore
from .tokens import LOCATION, TokenManager
from .utils import scope_list

logger = logging.getLogger(__name__)

OAUTH_STATE_COOKIE = 'd4d_oauth_state'
GHL_REFERER = re.compile(r'gohighlevel\.com|leadconnector', re.IGNORECASE)

NO_STORE = {'Cache-Control': 'no-store'}


def unauthorized():
    return Response({'error': 'Unauthorized'}, status=status.HTTP_401_UNAUTHORIZED)


def soft_error():
    return Response({'ok': True, 'softError': True}, status=status.HTTP_200_OK)


class MenuCleanupView(APIView):
    """Maintenance: remove the agency's custom menu once nothing is installed."""
    authentication_classes = []

    def post(self, request):
        if not maintenance_token_valid(request):
            return unauthorized()

        data = {
            'agencyId': request.data.get('agencyId') or request.query_params.get('agencyId', ''),
            'force': request.data.get('force', request.query_params.get('force') == '1'),
        }
        serializer = MenuCleanupSerializer(data=data)
        serializer.is_valid(raise_exception=True)

        result = MenuLifecycleManager().reconcile_menu(
            serializer.validated_data['agencyId'],
            force=serializer.validated_data['force'],
        )
        return Response(result.as_dict(), status=status.HTTP_200_OK, headers=NO_STORE)


class CompanyReconnectView(APIView):
    """Maintenance: rebuild agency credentials via /oauth/reconnect."""
    authentication_classes = []

    def post(self, request):
        if not maintenance_token_valid(request):
            return unauthorized()

        serializer = CompanyReconnectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        agency_id = serializer.validated_data['agencyId']

        record = TokenManager().reconnect_company(agency_id)
        return Response({
            'ok': True,
            'agencyId': agency_id,
            'expiresAt': record.expires_at,
        }, status=status.HTTP_200_OK, headers=NO_STORE)


class LocationTokenView(APIView):
    """Maintenance: a valid location access token plus its granted scopes."""
    authentication_classes = []

    def get(self, request):
        if not maintenance_token_valid(request):
            return unauthorized()

        location_id = request.query_params.get('locationId', '').strip()
        if not location_id:
            return Response({'error': 'Missing locationId'}, status=status.HTTP_400_BAD_REQUEST)

        tokens = TokenManager()
        access_token = tokens.get_valid_access_token(LOCATION, location_id)
        record = tokens.store.get(LOCATION, location_id)
        scopes = scope_list(record.scope if record else '')
        logger.info(f"location token issued for {location_id} ({len(scopes)} scopes)")

        return Response({
            'access_token': access_token,
            'scope': record.scope or '' if record else '',
            'scopes': scopes,
        }, status=status.HTTP_200_OK, headers=NO_STORE)


class AgencyLocationsView(APIView):
    """Locations recorded for an agency, for the agency-level location picker."""
    authentication_classes = []

    def get(self, request):
        agency_id = request.query_params.get('agencyId', '').strip()
        if not agency_id:
            return Response({'error': 'Missing agencyId'}, status=status.HTTP_400_BAD_REQUEST)

        summaries = LocationStore().for_agency(agency_id)
        minted = TokenStore().with_refresh_token(LOCATION, [s.location_id for s in summaries])
        items = AgencyLocationSerializer(summaries, many=True, context={'minted_location_ids': minted}).data
        return Response({
            'agencyId': agency_id,
            'count': len(items),
            'items': items,
        }, status=status.HTTP_200_OK, headers=NO_STORE)


class MarketplaceWebhookView(APIView):
    """GHL marketplace uninstall webhook.

    Always answers 200: a failure here is logged, never bounced back to the
    marketplace, which would redeliver indefinitely.
    """
    authentication_classes = []

    def post(self, request):
        try:
            return self.handle(request.data)
        except Exception:
            logger.exception("marketplace webhook failed; acknowledged with softError")
            return soft_error()

    def handle(self, data):
        serializer = MarketplaceWebhookSerializer(data=data)
        if not serializer.is_valid():
            logger.warning(f"marketplace webhook with unusable payload: {serializer.errors}")
            return soft_error()
        if not serializer.is_uninstall:
            return Response({'ok': True}, status=status.HTTP_200_OK)

        locations = LocationStore()
        agency_id = (serializer.validated_data.get('companyId') or '').strip() or None
        location_id = (serializer.validated_data.get('locationId') or '').strip() or None

        if location_id:
            locations.mark_uninstalled(location_id)
            agency_id = agency_id or locations.agency_for_location(location_id)
        elif agency_id:
            changed = locations.mark_agency_uninstalled(agency_id)
            logger.info(f"company uninstall: marked {changed} locations uninstalled for {agency_id}")

        if not agency_id:
            return Response({'ok': True}, status=status.HTTP_200_OK)

        result = MenuLifecycleManager().reconcile_menu(agency_id)
        return Response(result.as_dict(), status=status.HTTP_200_OK)


def _decode_return_to(value, app_base_url):
    default = f"{app_base_url}/app"
    if not value:
        return default
    try:
        decoded = base64.urlsafe_b64decode(value + '=' * (-len(value) % 4)).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return default
    return decoded if decoded.startswith(f"{app_base_url}/") else default


def _with_query(url, **params):
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query))
    query.update({k: v for k, v in params.items() if v})
    return urlunsplit(parts._replace(query=urlencode(query)))


class OAuthCallbackView(APIView):
    """Marketplace install redirect: redeem the code, store credentials, seed state."""
    authentication_classes = []

    def get(self, request):
        params = request.query_params
        code = params.get('code', '')
        user_type = {'location': 'Location', 'company': 'Company'}.get(
            (params.get('user_type') or params.get('userType') or '').lower()
        )

        state = params.get('state', '')
        nonce, _, return_to_b64 = state.partition('|')
        if state:
            cookie_nonce = request.COOKIES.get(OAUTH_STATE_COOKIE, '')
            if not cookie_nonce or not hmac.compare_digest(cookie_nonce.encode(), nonce.encode()):
                logger.warning("oauth callback state mismatch")
                return Response({'error': 'Invalid state'}, status=status.HTTP_400_BAD_REQUEST)
        elif not GHL_REFERER.search(request.headers.get('Referer', '')):
            return Response({'error': 'Invalid state'}, status=status.HTTP_400_BAD_REQUEST)

        if not code:
            return Response({'error': 'Missing code'}, status=status.HTTP_400_BAD_REQUEST)

        config = get_ghl_config()
        tokens = TokenManager()
        try:
            grant = tokens.exchange_authorization_code(code, user_type)
        except UpstreamRejected as e:
            logger.warning(f"oauth code exchange failed: {e}")
            return Response({'error': 'Token exchange failed'}, status=status.HTTP_502_BAD_GATEWAY)

        if grant.company_id and not grant.location_id:
            reconciler = InstalledLocationReconciler(tokens=tokens)
            reconciler.sync_installed_locations(grant.company_id, grant.access_token)
            MenuLifecycleManager(tokens=tokens, reconciler=reconciler).ensure_menu(
                grant.company_id, grant.access_token, grant.scopes
            )

        return_to = _decode_return_to(return_to_b64, config.app_base_url)
        logger.info(
            f"oauth success: user_type={user_type or '(none)'} agency={grant.company_id} "
            f"location={grant.location_id} scopes={len(grant.scopes)}"
        )
        return HttpResponseRedirect(_with_query(
            return_to,
            installed='1',
            agencyId=grant.company_id,
            locationId=grant.location_id,
        ))
