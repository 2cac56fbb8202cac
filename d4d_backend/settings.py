from pathlib import Path

from decouple import config, Csv

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config('SECRET_KEY', default='django-insecure-d4d-dev-key')
DEBUG = config('DEBUG', default=False, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1', cast=Csv())

INSTALLED_APPS = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'rest_framework',
    'ghl_accounts',
    'user_context',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'd4d_backend.urls'
WSGI_APPLICATION = 'd4d_backend.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': config('DB_ENGINE', default='django.db.backends.sqlite3'),
        'NAME': config('DB_NAME', default=str(BASE_DIR / 'db.sqlite3')),
        'USER': config('DB_USER', default=''),
        'PASSWORD': config('DB_PASSWORD', default=''),
        'HOST': config('DB_HOST', default=''),
        'PORT': config('DB_PORT', default=''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.AllowAny',
    ],
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'UNAUTHENTICATED_USER': None,
}

# GoHighLevel / LeadConnector
GHL_CLIENT_ID = config('GHL_CLIENT_ID', default='')
GHL_CLIENT_SECRET = config('GHL_CLIENT_SECRET', default='')
GHL_SHARED_SECRET_KEY = config('GHL_SHARED_SECRET_KEY', default='')
GHL_INTEGRATION_ID = config('GHL_INTEGRATION_ID', default='')
GHL_API_BASE = config('GHL_API_BASE', default='https://services.leadconnectorhq.com')
GHL_API_VERSION = config('GHL_API_VERSION', default='2021-07-28')
GHL_HTTP_TIMEOUT = config('GHL_HTTP_TIMEOUT', default=8, cast=float)
GHL_TOKEN_REFRESH_MARGIN = config('GHL_TOKEN_REFRESH_MARGIN', default=60, cast=int)
GHL_REDIRECT_PATH = config('GHL_REDIRECT_PATH', default='/api/oauth/callback/')

APP_BASE_URL = config('APP_BASE_URL', default='http://localhost:8000')
ADMIN_MAINT_TOKEN = config('ADMIN_MAINT_TOKEN', default='')

# Custom menu link injected into the agency's GHL sidebar
D4D_MENU_TITLE = config('D4D_MENU_TITLE', default='Driving for Dollars')
D4D_MENU_URL = config('D4D_MENU_URL', default='https://admin.driving4dollars.co/app')

OAUTH_LOG = config('OAUTH_LOG', default=False, cast=bool)
_OAUTH_LOG_LEVEL = 'INFO' if OAUTH_LOG else 'WARNING'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'oauth': {
            'format': '[oauth] %(levelname)s %(name)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'oauth',
        },
    },
    'loggers': {
        'ghl_accounts': {
            'handlers': ['console'],
            'level': _OAUTH_LOG_LEVEL,
            'propagate': True,
        },
        'user_context': {
            'handlers': ['console'],
            'level': _OAUTH_LOG_LEVEL,
            'propagate': True,
        },
    },
}
