from rest_framework import serializers

from .models import LocationSummary


class MenuCleanupSerializer(serializers.Serializer):
    agencyId = serializers.CharField(max_length=255)
    force = serializers.BooleanField(required=False, default=False)

    def validate_agencyId(self, value):
        return value.strip()


class CompanyReconnectSerializer(serializers.Serializer):
    agencyId = serializers.CharField(max_length=255)

    def validate_agencyId(self, value):
        return value.strip()


class MarketplaceWebhookSerializer(serializers.Serializer):
    """Both uninstall payload variants GHL sends: `type: UNINSTALL` and `event: AppUninstall`."""
    type = serializers.CharField(required=False, allow_blank=True)
    event = serializers.CharField(required=False, allow_blank=True)
    appId = serializers.CharField(required=False, allow_blank=True)
    companyId = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    locationId = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    @property
    def is_uninstall(self):
        data = self.validated_data
        return data.get('type') == 'UNINSTALL' or data.get('event') == 'AppUninstall'


class AgencyLocationSerializer(serializers.ModelSerializer):
    """A location row as listed for the agency UI.

    A location counts as installed when the summary says so or when a location
    refresh token is on file (`minted_location_ids` in the context).
    """
    locationId = serializers.CharField(source='location_id')
    name = serializers.CharField(source='display_name', allow_null=True)
    isInstalled = serializers.SerializerMethodField()
    updatedAt = serializers.DateTimeField(source='updated_at')

    class Meta:
        model = LocationSummary
        fields = ['locationId', 'name', 'isInstalled', 'updatedAt']

    def get_isInstalled(self, obj):
        return obj.is_installed or obj.location_id in self.context.get('minted_location_ids', set())
