from datetime import timedelta
from unittest import mock

import pytest
import requests

from ghl_accounts.exceptions import ConfigMissing, NoRefreshToken, UpstreamRejected
from ghl_accounts.models import GHLAuthCredentials, LocationSummary
from ghl_accounts.tokens import AGENCY, DEFAULT_TOKEN_LIFETIME, LOCATION, TokenGrant, TokenManager

pytestmark = pytest.mark.django_db


@pytest.fixture
def manager(ghl_client, now):
    return TokenManager(client=ghl_client, clock=lambda: now)


def token_body(**overrides):
    body = {
        'access_token': 'access-2',
        'refresh_token': 'refresh-2',
        'expires_in': 86399,
        'scope': 'locations.readonly custom-menu-link.write',
        'userType': 'Company',
        'companyId': 'agency-1',
    }
    body.update(overrides)
    return body


def test_cached_token_is_returned_without_network(manager, make_credentials, upstream):
    make_credentials(expires_in=3600)

    assert manager.get_valid_access_token(AGENCY, 'agency-1') == 'access-1'
    assert upstream.calls == []


def test_missing_record_raises_without_network(manager, upstream):
    with pytest.raises(NoRefreshToken) as exc:
        manager.get_valid_access_token(AGENCY, 'nobody')

    assert exc.value.status_code == 409
    assert exc.value.detail['needsReconnection'] is True
    assert upstream.calls == []


def test_record_without_refresh_token_raises(manager, make_credentials, upstream):
    make_credentials(refresh_token='')

    with pytest.raises(NoRefreshToken):
        manager.get_valid_access_token(AGENCY, 'agency-1')
    assert upstream.calls == []


def test_expired_token_is_refreshed_and_persisted(manager, make_credentials, upstream, now):
    make_credentials(expires_in=-600)
    upstream.add('POST', '/oauth/token', body=token_body())

    assert manager.get_valid_access_token(AGENCY, 'agency-1') == 'access-2'

    record = GHLAuthCredentials.objects.get(scope_type=AGENCY, scope_id='agency-1')
    assert record.access_token == 'access-2'
    assert record.refresh_token == 'refresh-2'
    assert record.expires_at > now
    assert record.scope == 'locations.readonly custom-menu-link.write'

    call, = upstream.calls
    assert call.kwargs['data'] == {
        'grant_type': 'refresh_token',
        'refresh_token': 'refresh-1',
        'client_id': 'client-id',
        'client_secret': 'client-secret',
        'user_type': 'Company',
    }
    assert call.kwargs['headers']['Version'] == '2021-07-28'
    assert call.kwargs['timeout'] == 2


def test_token_inside_refresh_margin_is_refreshed(manager, make_credentials, upstream):
    make_credentials(scope_type=LOCATION, scope_id='loc-1', expires_in=30)
    upstream.add('POST', '/oauth/token', body=token_body(access_token='loc-access'))

    assert manager.get_valid_access_token(LOCATION, 'loc-1') == 'loc-access'
    assert upstream.calls[0].kwargs['data']['user_type'] == 'Location'


def test_refresh_without_rotation_keeps_refresh_token(manager, make_credentials, upstream):
    make_credentials(expires_in=-1)
    upstream.add('POST', '/oauth/token', body=token_body(refresh_token=None, scope=''))

    manager.get_valid_access_token(AGENCY, 'agency-1')

    record = GHLAuthCredentials.objects.get(scope_type=AGENCY, scope_id='agency-1')
    assert record.refresh_token == 'refresh-1'
    assert record.scope == 'custom-menu-link.readonly custom-menu-link.write'


def test_rejected_refresh_surfaces_status_and_message(manager, make_credentials, upstream):
    make_credentials(expires_in=-1)
    upstream.add('POST', '/oauth/token', status=401, body={
        'error': 'invalid_grant', 'error_description': 'Invalid refresh token',
    })

    with pytest.raises(UpstreamRejected) as exc:
        manager.get_valid_access_token(AGENCY, 'agency-1')

    assert exc.value.upstream_status == 401
    assert exc.value.message == 'Invalid refresh token'
    record = GHLAuthCredentials.objects.get(scope_type=AGENCY, scope_id='agency-1')
    assert record.access_token == 'access-1'
    assert record.refresh_token == 'refresh-1'


def test_transport_error_is_upstream_rejected(manager, make_credentials, upstream):
    make_credentials(expires_in=-1)
    upstream.add('POST', '/oauth/token', exc=requests.Timeout('read timed out'))

    with pytest.raises(UpstreamRejected) as exc:
        manager.get_valid_access_token(AGENCY, 'agency-1')

    assert exc.value.upstream_status is None


def test_missing_client_credentials_is_config_error(manager, make_credentials, settings, upstream):
    make_credentials(expires_in=-1)
    settings.GHL_CLIENT_SECRET = ''

    with pytest.raises(ConfigMissing) as exc:
        manager.get_valid_access_token(AGENCY, 'agency-1')

    assert exc.value.detail['error'] == 'Server not configured (GHL_CLIENT_SECRET)'
    assert upstream.calls == []


def test_agency_token_is_none_when_unavailable(manager, upstream):
    assert manager.get_agency_access_token('agency-1') is None


def test_refresh_is_logged(ghl_client, make_credentials, upstream, now):
    logger = mock.Mock()
    make_credentials(expires_in=-1)
    upstream.add('POST', '/oauth/token', body=token_body())

    TokenManager(client=ghl_client, clock=lambda: now, logger=logger).get_valid_access_token(AGENCY, 'agency-1')

    messages = [call.args[0] for call in logger.info.call_args_list]
    assert any(m.startswith('token refreshed for Agency agency-1') for m in messages)
    assert not any('refresh-2' in m for m in messages)


def test_location_code_exchange_persists_and_marks_installed(manager, upstream, now):
    upstream.add('POST', '/oauth/token', body=token_body(
        access_token='loc-access', refresh_token='loc-refresh', userType='Location', locationId='loc-1',
    ))

    grant = manager.exchange_authorization_code('code-1', 'Location')

    assert grant.location_id == 'loc-1'
    record = GHLAuthCredentials.objects.get(scope_type=LOCATION, scope_id='loc-1')
    assert record.company_id == 'agency-1'
    assert record.refresh_token == 'loc-refresh'
    assert record.expires_at == now + timedelta(seconds=86399)
    summary = LocationSummary.objects.get(location_id='loc-1')
    assert summary.is_installed and summary.agency_id == 'agency-1'

    form = upstream.calls[0].kwargs['data']
    assert form['grant_type'] == 'authorization_code'
    assert form['redirect_uri'] == 'https://app.test/api/oauth/callback/'
    assert form['user_type'] == 'Location'


def test_company_code_exchange_persists_agency(manager, upstream):
    upstream.add('POST', '/oauth/token', body=token_body())

    manager.exchange_authorization_code('code-1')

    assert GHLAuthCredentials.objects.get(scope_type=AGENCY, scope_id='agency-1').access_token == 'access-2'
    assert 'user_type' not in upstream.calls[0].kwargs['data']


def test_grant_without_scope_ids_is_rejected(manager, upstream):
    upstream.add('POST', '/oauth/token', body=token_body(companyId=None))

    with pytest.raises(UpstreamRejected):
        manager.exchange_authorization_code('code-1')
    assert not GHLAuthCredentials.objects.exists()


def test_reconnect_company_rebuilds_agency_record(manager, upstream):
    upstream.add('POST', '/oauth/reconnect', body={'authorizationCode': 'fresh-code'})
    upstream.add('POST', '/oauth/token', body=token_body(companyId=None, locationId='loc-x'))

    record = manager.reconnect_company('agency-1')

    assert record.scope_type == AGENCY and record.scope_id == 'agency-1'
    assert record.refresh_token == 'refresh-2'
    reconnect, exchange = upstream.calls
    assert reconnect.kwargs['json'] == {
        'clientKey': 'client-id', 'clientSecret': 'client-secret', 'companyId': 'agency-1',
    }
    assert exchange.kwargs['data']['code'] == 'fresh-code'
    assert exchange.kwargs['data']['user_type'] == 'Company'
    assert not GHLAuthCredentials.objects.filter(scope_type=LOCATION).exists()


def test_token_grant_parsing():
    grant = TokenGrant.from_response({
        'access_token': ' tok ', 'expires_in': '-5', 'scope': 'a b,c', 'companyId': ' ',
    })

    assert grant.access_token == 'tok'
    assert grant.expires_in is None
    assert grant.scopes == ['a', 'b', 'c']
    assert grant.company_id is None
    assert grant.refresh_token is None


def test_client_targets_configured_base(ghl_client, upstream):
    upstream.add('GET', '/custom-menus/', body={'items': []})

    ghl_client.list_custom_menus('tok', 'agency-1')

    call, = upstream.calls
    assert call.path == '/custom-menus/'
    assert call.kwargs['params'] == {'companyId': 'agency-1'}
    assert call.kwargs['headers']['Authorization'] == 'Bearer tok'


@pytest.mark.parametrize('expires_in', [None, 0, 'soon'])
def test_refresh_without_lifetime_assumes_default(ghl_client, make_credentials, upstream, now, expires_in):
    logger = mock.Mock()
    make_credentials(expires_in=-1)
    upstream.add('POST', '/oauth/token', body=token_body(expires_in=expires_in))
    manager = TokenManager(client=ghl_client, clock=lambda: now, logger=logger)

    manager.get_valid_access_token(AGENCY, 'agency-1')

    record = GHLAuthCredentials.objects.get(scope_type=AGENCY, scope_id='agency-1')
    assert record.expires_at == now + timedelta(seconds=DEFAULT_TOKEN_LIFETIME)
    logger.warning.assert_called_once()
    assert 'no usable expires_in' in logger.warning.call_args.args[0]

    # the stored token is now reused instead of refreshed on every call
    assert manager.get_valid_access_token(AGENCY, 'agency-1') == 'access-2'
    assert len(upstream.called('POST', '/oauth/token')) == 1


def test_code_exchange_without_lifetime_assumes_default(manager, upstream, now):
    upstream.add('POST', '/oauth/token', body=token_body(expires_in=None))

    manager.exchange_authorization_code('code-1')

    record = GHLAuthCredentials.objects.get(scope_type=AGENCY, scope_id='agency-1')
    assert record.expires_at == now + timedelta(seconds=DEFAULT_TOKEN_LIFETIME)


def test_mint_location_credentials_stores_location_record(manager, upstream, now):
    upstream.add('POST', '/oauth/locationToken', body={
        'access_token': 'loc-access', 'refresh_token': 'loc-refresh', 'expires_in': 86399,
        'scope': 'contacts.readonly', 'locationId': 'loc-1',
    })

    record = manager.mint_location_credentials('agency-1', 'agency-token', 'loc-1')

    assert (record.scope_type, record.scope_id) == (LOCATION, 'loc-1')
    assert record.access_token == 'loc-access'
    assert record.refresh_token == 'loc-refresh'
    assert record.company_id == 'agency-1'
    assert record.expires_at == now + timedelta(seconds=86399)
    assert LocationSummary.objects.get(location_id='loc-1').is_installed

    call, = upstream.calls
    assert call.kwargs['json'] == {'companyId': 'agency-1', 'locationId': 'loc-1'}
    assert call.kwargs['headers']['Authorization'] == 'Bearer agency-token'


def test_mint_accepts_wrapped_body_with_refresh_token_only(manager, upstream):
    upstream.add('POST', '/oauth/locationToken', body={'data': {'refresh_token': 'loc-refresh'}})

    record = manager.mint_location_credentials('agency-1', 'agency-token', 'loc-1')

    assert record.refresh_token == 'loc-refresh'
    assert record.access_token == ''
    assert record.expires_at is None


@pytest.mark.parametrize('failure', [
    {'status': 403, 'body': {'message': 'Location not installed'}},
    {'body': {'access_token': 'only-access'}},
    {'body': ['not', 'an', 'object']},
])
def test_mint_failure_stores_nothing(manager, upstream, failure):
    upstream.add('POST', '/oauth/locationToken', **failure)

    assert manager.mint_location_credentials('agency-1', 'agency-token', 'loc-1') is None
    assert not GHLAuthCredentials.objects.exists()
    assert not LocationSummary.objects.exists()
