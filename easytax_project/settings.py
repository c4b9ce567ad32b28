from pathlib import Path
import json
import os

import dj_database_url
import sentry_sdk
from dotenv import load_dotenv
from sentry_sdk.integrations.django import DjangoIntegration


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")  # explicit .env location

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY") or os.getenv("SECRET_KEY") or "dev-key"


def _get_bool_env(name: str, default: bool) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.lower() in {"1", "true", "yes", "on"}


def _get_json_env(name: str, default):
    raw_value = os.getenv(name, "")
    if not raw_value:
        return default
    return json.loads(raw_value)


DEBUG = _get_bool_env("DJANGO_DEBUG", _get_bool_env("DEBUG", True))

ALLOWED_HOSTS = ["localhost", "127.0.0.1"]

INSTALLED_APPS = [
    "easytax.apps.EasyTaxAppConfig",
]

default_db = "sqlite:///" + str((BASE_DIR / "db.sqlite3").resolve())
database_url = os.getenv("DATABASE_URL", default_db)
DATABASES = {"default": dj_database_url.parse(database_url)}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ===================================
# EasyTax Configuration
# ===================================

# Default properties for every tenant. Resolver names are looked up in
# easytax.resolvers.TAX_ZONE_RESOLVERS / TAX_DATE_RESOLVERS.
EASYTAX_PROPERTIES = {
    "tax_zone_resolver": os.getenv("EASYTAX_TAX_ZONE_RESOLVER", "account_custom_field"),
    "tax_date_resolver": os.getenv("EASYTAX_TAX_DATE_RESOLVER", "simple"),
    "tax_scale": os.getenv("EASYTAX_TAX_SCALE", "2"),
    "tax_rounding_mode": os.getenv("EASYTAX_TAX_ROUNDING_MODE", "HALF_UP"),
    "account_custom_field_tax_zone_resolver.use_account_country": os.getenv(
        "EASYTAX_USE_ACCOUNT_COUNTRY", "true"
    ),
    "simple_tax_date_resolver.date_mode": os.getenv("EASYTAX_DATE_MODE", "endthenstart"),
    "simple_tax_date_resolver.default_time_zone": os.getenv("EASYTAX_DEFAULT_TIME_ZONE", "UTC"),
}

# {"<tenant uuid>": {"tax_scale": "3", ...}}
EASYTAX_TENANT_PROPERTIES = _get_json_env("EASYTAX_TENANT_PROPERTIES", {})

# Plan name -> product name, for billing systems without a catalog service.
EASYTAX_PLAN_PRODUCTS = _get_json_env("EASYTAX_PLAN_PRODUCTS", {})
EASYTAX_TENANT_PLAN_PRODUCTS = _get_json_env("EASYTAX_TENANT_PLAN_PRODUCTS", {})

# --- Sentry ---

SENTRY_DSN = os.getenv("SENTRY_DSN", "")

if not DEBUG and SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[DjangoIntegration()],
        traces_sample_rate=0.1,
        send_default_pii=False,
        environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
    )


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "easytax": {
            "handlers": ["console"],
            "level": os.getenv("EASYTAX_LOG_LEVEL", "INFO"),
        },
    },
}
