from __future__ import annotations

import logging
import threading
from decimal import (
    ROUND_CEILING,
    ROUND_DOWN,
    ROUND_FLOOR,
    ROUND_HALF_DOWN,
    ROUND_HALF_EVEN,
    ROUND_HALF_UP,
    ROUND_UP,
    Decimal,
)
from typing import Mapping, Optional
from uuid import UUID

from django.conf import settings

logger = logging.getLogger(__name__)


TAX_ZONE_RESOLVER_PROPERTY = "tax_zone_resolver"
TAX_DATE_RESOLVER_PROPERTY = "tax_date_resolver"
TAX_SCALE_PROPERTY = "tax_scale"
TAX_ROUNDING_MODE_PROPERTY = "tax_rounding_mode"

DEFAULT_TAX_ZONE_RESOLVER = "account_custom_field"
DEFAULT_TAX_DATE_RESOLVER = "simple"
DEFAULT_TAX_SCALE = 2
DEFAULT_TAX_ROUNDING_MODE = "HALF_UP"

ROUNDING_MODES = {
    "UP": ROUND_UP,
    "DOWN": ROUND_DOWN,
    "CEILING": ROUND_CEILING,
    "FLOOR": ROUND_FLOOR,
    "HALF_UP": ROUND_HALF_UP,
    "HALF_DOWN": ROUND_HALF_DOWN,
    "HALF_EVEN": ROUND_HALF_EVEN,
}


def _truthy(raw_value: Optional[str], default: bool) -> bool:
    if raw_value is None:
        return default
    return str(raw_value).strip().lower() in {"1", "true", "yes", "on"}


class EasyTaxConfig:
    """
    Configuration properties for one tenant.

    Values are plain strings (as they arrive from the environment or a tenant upload); the
    typed accessors fall back to the documented defaults when a value cannot be parsed.
    """

    def __init__(self, properties: Optional[Mapping[str, str]] = None):
        self.properties = dict(properties or {})

    def get_configuration_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.properties.get(key)
        if value is None or value == "":
            return default
        return str(value)

    def get_bool(self, key: str, default: bool) -> bool:
        return _truthy(self.get_configuration_value(key), default)

    @property
    def tax_zone_resolver(self) -> str:
        return self.get_configuration_value(TAX_ZONE_RESOLVER_PROPERTY, DEFAULT_TAX_ZONE_RESOLVER)

    @property
    def tax_date_resolver(self) -> str:
        return self.get_configuration_value(TAX_DATE_RESOLVER_PROPERTY, DEFAULT_TAX_DATE_RESOLVER)

    @property
    def tax_scale(self) -> int:
        raw = self.get_configuration_value(TAX_SCALE_PROPERTY, str(DEFAULT_TAX_SCALE))
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("Invalid %s value %r; using %s", TAX_SCALE_PROPERTY, raw, DEFAULT_TAX_SCALE)
            return DEFAULT_TAX_SCALE

    @property
    def tax_rounding_mode(self) -> str:
        """Return a `decimal` rounding constant, HALF_UP unless configured otherwise."""
        raw = self.get_configuration_value(TAX_ROUNDING_MODE_PROPERTY, DEFAULT_TAX_ROUNDING_MODE)
        mode = ROUNDING_MODES.get(raw.strip().upper())
        if mode is None:
            logger.warning("Unknown %s value %r; using HALF_UP", TAX_ROUNDING_MODE_PROPERTY, raw)
            return ROUND_HALF_UP
        return mode

    def round_tax(self, amount: Decimal) -> Decimal:
        return amount.quantize(Decimal(1).scaleb(-self.tax_scale), rounding=self.tax_rounding_mode)

    def __repr__(self):
        return f"EasyTaxConfig({self.properties!r})"


class ConfigurationHandler:
    """
    Per-tenant configuration: the default properties overlaid with any tenant-specific ones.

    Tenant properties can be replaced at runtime. Resolvers already created for a tenant keep
    the configuration they were built with.
    """

    def __init__(
        self,
        default_properties: Optional[Mapping[str, str]] = None,
        tenant_properties: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        self._default_properties = dict(default_properties or {})
        self._tenant_properties: dict[str, dict[str, str]] = {
            str(tenant_id): dict(props) for tenant_id, props in (tenant_properties or {}).items()
        }
        self._configs: dict[str, EasyTaxConfig] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "ConfigurationHandler":
        return cls(
            default_properties=getattr(settings, "EASYTAX_PROPERTIES", {}),
            tenant_properties=getattr(settings, "EASYTAX_TENANT_PROPERTIES", {}),
        )

    def get_config(self, tenant_id: Optional[UUID]) -> EasyTaxConfig:
        key = str(tenant_id) if tenant_id is not None else ""
        with self._lock:
            config = self._configs.get(key)
            if config is None:
                merged = dict(self._default_properties)
                merged.update(self._tenant_properties.get(key, {}))
                config = EasyTaxConfig(merged)
                self._configs[key] = config
            return config

    def set_tenant_properties(self, tenant_id: UUID, properties: Mapping[str, str]) -> None:
        key = str(tenant_id)
        with self._lock:
            self._tenant_properties[key] = dict(properties)
            self._configs.pop(key, None)
        logger.info("Updated EasyTax configuration for tenant %s", tenant_id)
