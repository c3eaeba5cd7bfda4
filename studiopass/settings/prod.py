# studiopass/settings/prod.py
from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("DB_NAME", "studiopass_db"),
        "USER": os.getenv("DB_USER", "studiopass"),
        "PASSWORD": os.getenv("DB_PASSWORD"),
        "HOST": os.getenv("DB_HOST", "127.0.0.1"),  # "" pour socket Unix
        "PORT": os.getenv("DB_PORT", "5432"),
        "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
    }
}

SITE_DOMAIN = os.getenv('SITE_DOMAIN')  # ex: "learn.example.com"
SITE_ALIASES = os.getenv("SITE_ALIASES", "")
if not SITE_DOMAIN:
    raise RuntimeError("SITE_DOMAIN is not set in production.")

ALIASES = [h.strip() for h in SITE_ALIASES.split(",") if h.strip()]
ALLOWED_HOSTS = [SITE_DOMAIN] + ALIASES
CSRF_TRUSTED_ORIGINS = [f"https://{SITE_DOMAIN}"] + [f"https://{h}" for h in ALIASES]

# Partial unique constraints on grants are the serialization point.
if DATABASES['default']['ENGINE'].endswith('sqlite3'):
    raise RuntimeError("SQLite is not allowed in production. Configure DB_ENGINE/DB_NAME/...")

if not ENTITLEMENTS_WEBHOOK_SECRET:
    raise RuntimeError("ENTITLEMENTS_WEBHOOK_SECRET must be set in production.")

SECURE_REFERRER_POLICY = "strict-origin-when-cross-origin"

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOGGING['root']['level'] = LOG_LEVEL
LOGGING['loggers']['django.request']['level'] = 'ERROR'
