import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from .exceptions import UpstreamRejected
from .installs import InstalledLocationReconciler
from .store import CredentialPatch, TokenStore
from .tokens import AGENCY, TokenManager
from .utils import CML_READ_SCOPE, CML_WRITE_SCOPE

logger = logging.getLogger(__name__)

KEPT_MENU = 'keptMenu'
REMOVED = 'removed'
NOT_FOUND = 'notFound'
PENDING_MANUAL_REMOVAL = 'pendingManualRemoval'
DELETE_FAILED = 'deleteFailed'


def find_our_menu(menus, title=None, base_url=None):
    """Return the menu this app installed, or None.

    Both the exact title and the product URL prefix have to match; a title
    match alone could be a tenant's own link with the same name.
    """
    title = title or settings.D4D_MENU_TITLE
    base_url = base_url or settings.D4D_MENU_URL
    for menu in menus:
        if menu.title == title and menu.url.startswith(base_url):
            return menu
    return None


@dataclass
class MenuReconcileResult:
    outcome: str
    agency_id: str
    force: bool = False
    installed_count: Optional[int] = None
    source: Optional[str] = None
    menu_id: Optional[str] = None
    error: Optional[str] = None
    upstream_status: Optional[int] = None

    @property
    def ok(self):
        return self.outcome != DELETE_FAILED

    def as_dict(self):
        data = {
            'ok': self.ok,
            'outcome': self.outcome,
            'agencyId': self.agency_id,
            'force': self.force,
            'installedCount': self.installed_count,
            'source': self.source,
        }
        if self.menu_id:
            data['menuId'] = self.menu_id
        if self.error:
            data['error'] = self.error
            data['upstreamStatus'] = self.upstream_status
        return data


class MenuLifecycleManager:
    """Creates, finds and removes the agency's "Driving for Dollars" menu link."""

    def __init__(self, tokens=None, reconciler=None, store=None, client=None, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self.tokens = tokens or TokenManager(logger=self.logger)
        self.store = store or self.tokens.store
        self.client = client or self.tokens.client
        self.reconciler = reconciler or InstalledLocationReconciler(
            tokens=self.tokens, client=self.client, logger=self.logger
        )

    def reconcile_menu(self, agency_id, force=False):
        """Delete the menu when no location of the agency still has the app.

        With force=True the menu is removed even while installs remain. The
        agency token is looked up once and shared with the install check.
        """
        access_token = self.tokens.get_agency_access_token(agency_id)
        state = self.reconciler.installed_state(agency_id, access_token)
        result = MenuReconcileResult(
            outcome=KEPT_MENU,
            agency_id=agency_id,
            force=force,
            installed_count=state.installed_count,
            source=state.source,
        )
        if state.installed_count > 0 and not force:
            self.logger.info(f"keeping menu for {agency_id}: {state.installed_count} installs ({state.source})")
            return result

        if not access_token:
            self.logger.warning(f"no agency token for {agency_id}; menu removal left pending")
            result.outcome = PENDING_MANUAL_REMOVAL
            return result

        menu_id = self.resolve_menu_id(agency_id, access_token)
        if not menu_id:
            result.outcome = NOT_FOUND
            return result
        result.menu_id = menu_id

        try:
            self.client.delete_custom_menu(access_token, menu_id)
        except UpstreamRejected as e:
            self.logger.warning(f"menu {menu_id} removal failed for {agency_id}: {e}")
            result.outcome = DELETE_FAILED
            result.error = e.message
            result.upstream_status = e.upstream_status
            return result

        self.store.upsert(AGENCY, agency_id, CredentialPatch(custom_menu_id=None))
        result.outcome = REMOVED
        self.logger.info(f"menu {menu_id} removed for {agency_id}")
        return result

    def resolve_menu_id(self, agency_id, access_token):
        """Cached id from the agency record, else a lookup of the company menus."""
        record = self.store.get(AGENCY, agency_id)
        if record and record.custom_menu_id:
            return record.custom_menu_id

        try:
            menus = self.client.list_custom_menus(access_token, agency_id)
        except UpstreamRejected as e:
            self.logger.warning(f"listing custom menus failed for {agency_id}: {e}")
            return None
        menu = find_our_menu(menus)
        return menu.id if menu else None

    def ensure_menu(self, agency_id, access_token, scopes):
        """Make sure the agency has our menu link; returns its id when known."""
        if CML_READ_SCOPE not in scopes or CML_WRITE_SCOPE not in scopes:
            self.logger.info(f"ensure_menu skipped for {agency_id}: custom menu scopes not granted")
            return None

        try:
            existing = find_our_menu(self.client.list_custom_menus(access_token, agency_id))
        except UpstreamRejected as e:
            self.logger.warning(f"listing custom menus failed for {agency_id}, will try to create: {e}")
            existing = None
        if existing:
            if existing.id:
                self._remember_menu(agency_id, existing.id)
            return existing.id

        body = {
            'title': settings.D4D_MENU_TITLE,
            'url': f"{settings.D4D_MENU_URL}?location_id={{{{location.id}}}}",
            'showOnCompany': False,
            'showOnLocation': True,
            'showToAllLocations': True,
            'allowCamera': False,
            'allowMicrophone': False,
            'userRole': 'admin',
            'icon': {'fontFamily': 'fas', 'name': 'car'},
        }
        for open_mode in ('iframe', 'current_tab'):
            try:
                menu_id = self.client.create_custom_menu(access_token, agency_id, {**body, 'openMode': open_mode})
            except UpstreamRejected as e:
                self.logger.warning(f"menu create with openMode={open_mode} failed for {agency_id}: {e}")
                continue
            self.logger.info(f"menu created for {agency_id} (openMode={open_mode})")
            if menu_id:
                self._remember_menu(agency_id, menu_id)
            return menu_id
        return None

    def _remember_menu(self, agency_id, menu_id):
        self.store.upsert(AGENCY, agency_id, CredentialPatch(custom_menu_id=menu_id))
