from django.urls import path, include

urlpatterns = [
    path('api/', include('ghl_accounts.urls')),
    path('api/user-context/', include('user_context.urls')),
]
