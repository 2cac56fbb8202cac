from django.apps import AppConfig


class UserContextConfig(AppConfig):
    name = 'user_context'
    verbose_name = 'User Context'
