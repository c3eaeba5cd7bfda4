# studiopass/settings/dev.py
# export DJANGO_SETTINGS_MODULE=studiopass.settings.dev

from .base import *  # noqa: F401,F403

DEBUG = True

ALLOWED_HOSTS = ['127.0.0.1', 'localhost', 'testserver']
CSRF_TRUSTED_ORIGINS = ['http://127.0.0.1:8000', 'http://localhost:8000']

# Dev: pas de redirection SSL forcée
SECURE_SSL_REDIRECT = False
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False
SECURE_HSTS_SECONDS = 0

# Emails en console si tu préfères debug facile
if os.getenv('DEV_EMAIL_CONSOLE', '1') in ('1', 'true', 'True'):
    EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'

# SQLite par défaut en dev (déjà configuré dans base)

LOGGING['loggers'].update({
    'entitlements.resolver': {
        'handlers': ['console'],
        'level': 'DEBUG',
        'propagate': False,
    },
})
