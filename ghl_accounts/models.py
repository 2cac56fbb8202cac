from django.db import models


class GHLAuthCredentials(models.Model):
    """OAuth credentials for one GHL scope (an agency or a single location)."""

    SCOPE_AGENCY = 'Agency'
    SCOPE_LOCATION = 'Location'
    SCOPE_TYPE_CHOICES = [
        (SCOPE_AGENCY, 'Agency'),
        (SCOPE_LOCATION, 'Location'),
    ]

    scope_type = models.CharField(max_length=20, choices=SCOPE_TYPE_CHOICES)
    scope_id = models.CharField(max_length=255)
    company_id = models.CharField(max_length=255, null=True, blank=True)

    access_token = models.TextField(blank=True, default='')
    refresh_token = models.TextField(blank=True, default='')
    expires_at = models.DateTimeField(null=True, blank=True)

    scope = models.TextField(null=True, blank=True)
    user_id = models.CharField(max_length=255, null=True, blank=True)
    user_type = models.CharField(max_length=50, null=True, blank=True)

    # Agency records only: id of the installed custom menu link
    custom_menu_id = models.CharField(max_length=255, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'ghl_auth_credentials'
        verbose_name = 'GHL Auth Credentials'
        verbose_name_plural = 'GHL Auth Credentials'
        constraints = [
            models.UniqueConstraint(fields=['scope_type', 'scope_id'], name='uniq_ghl_credentials_scope'),
        ]

    def __str__(self):
        return f"{self.scope_type} - {self.scope_id} - {self.company_id}"


class LocationSummary(models.Model):
    """Locally cached install state of a GHL location (sub-account)."""
    location_id = models.CharField(max_length=255, unique=True)
    agency_id = models.CharField(max_length=255, db_index=True)
    display_name = models.CharField(max_length=255, null=True, blank=True)
    is_installed = models.BooleanField(default=False)
    installed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'ghl_location_summaries'
        verbose_name = 'Location Summary'
        verbose_name_plural = 'Location Summaries'
        ordering = ['location_id']

    def __str__(self):
        return self.display_name or self.location_id
