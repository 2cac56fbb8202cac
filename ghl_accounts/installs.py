import logging
from dataclasses import dataclass

from django.conf import settings

from .exceptions import UpstreamRejected
from .store import LocationStore
from .tokens import TokenManager
from .utils import COMPANY_LOCATIONS_PAGE_SIZE

logger = logging.getLogger(__name__)

SOURCE_UPSTREAM = 'upstream'
SOURCE_LOCAL = 'local-fallback'

MAX_COMPANY_LOCATION_PAGES = 999


@dataclass(frozen=True)
class InstallState:
    installed_count: int
    source: str

    def as_dict(self):
        return {'installedCount': self.installed_count, 'source': self.source}


class InstalledLocationReconciler:
    """
    Answers "is this agency still installed anywhere?".

    The GHL installedLocations endpoint is authoritative whenever it can be
    reached. The local LocationSummary table can lag (a location may uninstall
    without a webhook ever arriving) and is only used when the upstream
    answer is unavailable.
    """

    def __init__(self, tokens=None, locations=None, client=None, integration_id=None, logger=None):
        self.logger = logger or logging.getLogger(__name__)
        self.tokens = tokens or TokenManager(logger=self.logger)
        self.locations = locations or LocationStore()
        self.client = client or self.tokens.client
        if integration_id is None:
            integration_id = settings.GHL_INTEGRATION_ID
        self.integration_id = (integration_id or '').strip()

    def is_agency_still_installed(self, agency_id):
        return self.installed_state(agency_id, self.tokens.get_agency_access_token(agency_id))

    def installed_state(self, agency_id, access_token):
        """Same answer for a caller already holding the agency token (or None)."""
        count = self._upstream_count(agency_id, access_token)
        if count is not None:
            return InstallState(installed_count=count, source=SOURCE_UPSTREAM)

        count = self.locations.count_installed(agency_id)
        self.logger.info(f"installed count for {agency_id} from local store: {count}")
        return InstallState(installed_count=count, source=SOURCE_LOCAL)

    def _upstream_count(self, agency_id, access_token):
        if not self.integration_id or not access_token:
            return None
        try:
            entries = self.client.installed_locations(access_token, agency_id, self.integration_id)
        except UpstreamRejected as e:
            self.logger.warning(
                f"installedLocations failed for {agency_id} "
                f"(app ...{self.integration_id[-6:]}), falling back to local store: {e}"
            )
            return None
        self.logger.info(f"installedLocations for {agency_id}: {len(entries)}")
        return len(entries)

    def sync_installed_locations(self, agency_id, access_token):
        """Record the agency's locations and mint a location token for each.

        installedLocations is asked first; when it fails or comes back empty
        every location of the company is paged through instead. A failed
        mint only skips that location.
        """
        entries = self._installed_entries(agency_id, access_token)
        if not entries:
            entries = self._company_entries(agency_id, access_token)

        for entry in entries:
            self.locations.upsert(
                entry.location_id,
                agency_id=agency_id,
                is_installed=entry.is_installed,
                display_name=entry.name,
            )

        minted = 0
        for entry in entries:
            if self.tokens.mint_location_credentials(agency_id, access_token, entry.location_id):
                minted += 1
        self.logger.info(f"synced {len(entries)} locations for {agency_id}, minted {minted} location tokens")
        return entries

    def _installed_entries(self, agency_id, access_token):
        if not self.integration_id:
            return []
        try:
            return self.client.installed_locations(access_token, agency_id, self.integration_id)
        except UpstreamRejected as e:
            self.logger.warning(f"installedLocations failed for {agency_id}, falling back to company locations: {e}")
            return []

    def _company_entries(self, agency_id, access_token):
        entries = []
        for page in range(1, MAX_COMPANY_LOCATION_PAGES + 1):
            try:
                batch = self.client.company_locations(
                    access_token, agency_id, page=page, limit=COMPANY_LOCATIONS_PAGE_SIZE
                )
            except UpstreamRejected as e:
                self.logger.warning(f"company locations page {page} failed for {agency_id}: {e}")
                break
            entries.extend(batch)
            if len(batch) < COMPANY_LOCATIONS_PAGE_SIZE:
                break
        self.logger.info(f"company locations fallback for {agency_id}: {len(entries)}")
        return entries
