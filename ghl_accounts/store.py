"""
Persistence boundary for GHL credentials and cached location install state.

Writes are merge-style: a CredentialPatch carries only the fields the caller
wants to change and every other column on the stored row is left untouched.
This is a contract of TokenStore.upsert, not an accident of the ORM.
"""
import logging
from dataclasses import dataclass, fields

from django.db import transaction
from django.utils import timezone

from .models import GHLAuthCredentials, LocationSummary

logger = logging.getLogger(__name__)

AGENCY_LOCATIONS_LIMIT = 500


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET = _Unset()


@dataclass
class CredentialPatch:
    """Partial update for a credential record. UNSET fields are not written.

    `None` is a real value (e.g. clearing custom_menu_id); only UNSET means
    "leave as is".
    """
    access_token: object = UNSET
    refresh_token: object = UNSET
    expires_at: object = UNSET
    company_id: object = UNSET
    scope: object = UNSET
    user_id: object = UNSET
    user_type: object = UNSET
    custom_menu_id: object = UNSET

    def changes(self):
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


class TokenStore:
    """get/upsert of GHLAuthCredentials keyed by (scope_type, scope_id)."""

    def __init__(self, logger=None):
        self.logger = logger or logging.getLogger(__name__)

    def get(self, scope_type, scope_id):
        return GHLAuthCredentials.objects.filter(scope_type=scope_type, scope_id=scope_id).first()

    def with_refresh_token(self, scope_type, scope_ids):
        """Subset of `scope_ids` that hold a stored refresh token."""
        return set(
            GHLAuthCredentials.objects.filter(scope_type=scope_type, scope_id__in=list(scope_ids))
            .exclude(refresh_token='')
            .values_list('scope_id', flat=True)
        )

    def upsert(self, scope_type, scope_id, patch):
        """Apply `patch` to the record for the scope, creating it if needed.

        A refresh token is never replaced by an empty value: a failed or
        partial refresh must not destroy the ability to recover.
        """
        changes = patch.changes()
        if 'refresh_token' in changes and not changes['refresh_token']:
            self.logger.info(f"ignoring empty refresh_token write for {scope_type} {scope_id}")
            changes.pop('refresh_token')

        with transaction.atomic():
            record, created = GHLAuthCredentials.objects.select_for_update().get_or_create(
                scope_type=scope_type,
                scope_id=scope_id,
                defaults=changes,
            )
            if not created and changes:
                for name, value in changes.items():
                    setattr(record, name, value)
                record.save(update_fields=[*changes, 'updated_at'])

        self.logger.info(
            f"credentials {'created' if created else 'updated'} for {scope_type} {scope_id}: {sorted(changes)}"
        )
        return record


class LocationStore:
    """Local cache of which locations have the app installed."""

    def get(self, location_id):
        return LocationSummary.objects.filter(location_id=location_id).first()

    def upsert(self, location_id, agency_id=None, is_installed=None, display_name=None):
        """Merge-write a location summary; None arguments leave the column as is."""
        changes = {}
        if agency_id:
            changes['agency_id'] = agency_id
        if display_name:
            changes['display_name'] = display_name
        if is_installed is not None:
            changes['is_installed'] = is_installed

        with transaction.atomic():
            summary, created = LocationSummary.objects.select_for_update().get_or_create(
                location_id=location_id,
                defaults={'agency_id': '', **changes},
            )
            for name, value in changes.items():
                setattr(summary, name, value)
            if summary.is_installed and summary.installed_at is None:
                summary.installed_at = timezone.now()
            summary.save()
        return summary

    def count_installed(self, agency_id):
        return LocationSummary.objects.filter(agency_id=agency_id, is_installed=True).count()

    def mark_uninstalled(self, location_id):
        return LocationSummary.objects.filter(location_id=location_id).update(
            is_installed=False, updated_at=timezone.now()
        )

    def mark_agency_uninstalled(self, agency_id):
        return LocationSummary.objects.filter(agency_id=agency_id).update(
            is_installed=False, updated_at=timezone.now()
        )

    def agency_for_location(self, location_id):
        summary = self.get(location_id)
        return summary.agency_id if summary and summary.agency_id else None

    def for_agency(self, agency_id, limit=AGENCY_LOCATIONS_LIMIT):
        return list(LocationSummary.objects.filter(agency_id=agency_id)[:limit])
