from django.urls import path

from .views import (
    AgencyLocationsView,
    CompanyReconnectView,
    LocationTokenView,
    MarketplaceWebhookView,
    MenuCleanupView,
    OAuthCallbackView,
)

urlpatterns = [
    path('oauth/callback/', OAuthCallbackView.as_view(), name='ghl-oauth-callback'),
    path('webhooks/ghl/marketplace/', MarketplaceWebhookView.as_view(), name='ghl-marketplace-webhook'),
    path('maintenance/cleanup-menus/', MenuCleanupView.as_view(), name='maintenance-cleanup-menus'),
    path('maintenance/reconnect-company/', CompanyReconnectView.as_view(), name='maintenance-reconnect-company'),
    path('tokens/location/', LocationTokenView.as_view(), name='location-token'),
    path('agency/locations/', AgencyLocationsView.as_view(), name='agency-locations'),
]
