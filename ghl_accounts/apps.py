from django.apps import AppConfig


class GhlAccountsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'ghl_accounts'
    verbose_name = 'GHL Accounts'
