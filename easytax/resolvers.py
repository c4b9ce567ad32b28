from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, time
from enum import Enum
from typing import Callable, Dict, Generic, Iterable, Optional, Type, TypeVar
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import EasyTaxConfig
from .invoicing import Account, Invoice, InvoiceItem

logger = logging.getLogger(__name__)


class TaxZoneResolver(ABC):
    """
    Determines the tax zone (jurisdiction) for an invoice.

    Instances are created once per tenant with that tenant's configuration and are shared by
    concurrent computations, so implementations must be thread-safe.
    """

    def __init__(self, config: Optional[EasyTaxConfig] = None):
        self.config = config or EasyTaxConfig()

    @abstractmethod
    def tax_zone_for_invoice(
        self,
        tenant_id: UUID,
        account: Account,
        invoice: Invoice,
        properties: Optional[Iterable] = None,
    ) -> Optional[str]:
        """Return the tax zone, or None when the invoice is not taxable."""


class TaxDateResolver(ABC):
    """
    Determines the point in time whose tax rates apply to an invoice item.

    Same lifecycle and thread-safety rules as TaxZoneResolver.
    """

    def __init__(self, config: Optional[EasyTaxConfig] = None):
        self.config = config or EasyTaxConfig()

    @abstractmethod
    def tax_date_for_invoice_item(
        self,
        tenant_id: UUID,
        account: Account,
        invoice: Invoice,
        item: InvoiceItem,
        properties: Optional[Iterable] = None,
    ) -> Optional[datetime]:
        """Return an aware datetime, or None when no date can be resolved."""


# --- Zone resolvers ---


class AccountCustomFieldTaxZoneResolver(TaxZoneResolver):
    """Use the account's `taxCode` custom field, falling back to the account country."""

    USE_ACCOUNT_COUNTRY_PROPERTY = "account_custom_field_tax_zone_resolver.use_account_country"
    TAX_ZONE_CUSTOM_FIELD = "taxCode"

    @property
    def use_account_country(self) -> bool:
        return self.config.get_bool(self.USE_ACCOUNT_COUNTRY_PROPERTY, True)

    def tax_zone_for_invoice(self, tenant_id, account, invoice, properties=None):
        if account is None:
            return None
        tax_zone = (account.custom_fields or {}).get(self.TAX_ZONE_CUSTOM_FIELD) or None
        if tax_zone is None and self.use_account_country:
            tax_zone = account.country or None
        return tax_zone


class AccountCountryTaxZoneResolver(TaxZoneResolver):
    """Use the account country as the tax zone."""

    def tax_zone_for_invoice(self, tenant_id, account, invoice, properties=None):
        if account is None:
            return None
        return account.country or None


# --- Date resolvers ---


class DateMode(str, Enum):
    INVOICE = "invoice"
    START = "start"
    START_THEN_END = "startthenend"
    END = "end"
    END_THEN_START = "endthenstart"

    @classmethod
    def from_property_value(cls, value: Optional[str]) -> "DateMode":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.END_THEN_START


class SimpleTaxDateResolver(TaxDateResolver):
    """
    Use the invoice item's end or start date, or the invoice date.

    The selected calendar date is turned into the start of that day in the account's time
    zone (or the configured default zone). When no date is available, the item's created
    date and then the invoice's created date are used, if enabled.
    """

    DATE_MODE_PROPERTY = "simple_tax_date_resolver.date_mode"
    FALLBACK_TO_INVOICE_DATE_PROPERTY = "simple_tax_date_resolver.fall_back_to_invoice_date"
    FALLBACK_TO_INVOICE_ITEM_CREATED_DATE_PROPERTY = "simple_tax_date_resolver.fall_back_to_invoice_item_created_date"
    FALLBACK_TO_INVOICE_CREATED_DATE_PROPERTY = "simple_tax_date_resolver.fall_back_to_invoice_created_date"
    DEFAULT_TZ_PROPERTY = "simple_tax_date_resolver.default_time_zone"

    def __init__(self, config: Optional[EasyTaxConfig] = None):
        super().__init__(config)
        cfg = self.config
        self.mode = DateMode.from_property_value(cfg.get_configuration_value(self.DATE_MODE_PROPERTY))
        self.fall_back_to_invoice_date = cfg.get_bool(self.FALLBACK_TO_INVOICE_DATE_PROPERTY, True)
        self.fall_back_to_invoice_item_created_date = cfg.get_bool(
            self.FALLBACK_TO_INVOICE_ITEM_CREATED_DATE_PROPERTY, True
        )
        self.fall_back_to_invoice_created_date = cfg.get_bool(self.FALLBACK_TO_INVOICE_CREATED_DATE_PROPERTY, True)
        self.default_time_zone = _zone_or_utc(cfg.get_configuration_value(self.DEFAULT_TZ_PROPERTY, "UTC"))

    def tax_date_for_invoice_item(self, tenant_id, account, invoice, item, properties=None):
        if self.mode == DateMode.INVOICE:
            applicable_date = invoice.invoice_date
        elif self.mode in (DateMode.START, DateMode.START_THEN_END):
            applicable_date = item.start_date
            if applicable_date is None and self.mode == DateMode.START_THEN_END:
                applicable_date = item.end_date
        else:
            applicable_date = item.end_date
            if applicable_date is None and self.mode == DateMode.END_THEN_START:
                applicable_date = item.start_date

        if applicable_date is None and self.fall_back_to_invoice_date:
            applicable_date = invoice.invoice_date

        if applicable_date is not None:
            tz = self.default_time_zone
            if account is not None and account.time_zone:
                tz = _zone_or_utc(account.time_zone, fallback=self.default_time_zone)
            return datetime.combine(applicable_date, time.min, tzinfo=tz)

        if self.fall_back_to_invoice_item_created_date and item.created_date is not None:
            return item.created_date
        if self.fall_back_to_invoice_created_date and invoice.created_date is not None:
            return invoice.created_date
        return None


def _zone_or_utc(name: Optional[str], fallback=None):
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r; using %s", name, fallback or "UTC")
        return fallback or ZoneInfo("UTC")


# --- Registries ---

TAX_ZONE_RESOLVERS: Dict[str, Type[TaxZoneResolver]] = {
    "account_custom_field": AccountCustomFieldTaxZoneResolver,
    "account_country": AccountCountryTaxZoneResolver,
}

TAX_DATE_RESOLVERS: Dict[str, Type[TaxDateResolver]] = {
    "simple": SimpleTaxDateResolver,
}

DEFAULT_TAX_ZONE_RESOLVER_CLASS = AccountCustomFieldTaxZoneResolver
DEFAULT_TAX_DATE_RESOLVER_CLASS = SimpleTaxDateResolver


def register_tax_zone_resolver(name: str):
    """Class decorator making a TaxZoneResolver selectable by name in configuration."""

    def decorator(cls):
        TAX_ZONE_RESOLVERS[name] = cls
        return cls

    return decorator


def register_tax_date_resolver(name: str):
    """Class decorator making a TaxDateResolver selectable by name in configuration."""

    def decorator(cls):
        TAX_DATE_RESOLVERS[name] = cls
        return cls

    return decorator


def create_tax_zone_resolver(config: EasyTaxConfig) -> TaxZoneResolver:
    name = config.tax_zone_resolver
    resolver_class = TAX_ZONE_RESOLVERS.get(name)
    if resolver_class is None:
        logger.error(
            "Unknown tax zone resolver [%s]; using default %s", name, DEFAULT_TAX_ZONE_RESOLVER_CLASS.__name__
        )
        resolver_class = DEFAULT_TAX_ZONE_RESOLVER_CLASS
    return resolver_class(config)


def create_tax_date_resolver(config: EasyTaxConfig) -> TaxDateResolver:
    name = config.tax_date_resolver
    resolver_class = TAX_DATE_RESOLVERS.get(name)
    if resolver_class is None:
        logger.error(
            "Unknown tax date resolver [%s]; using default %s", name, DEFAULT_TAX_DATE_RESOLVER_CLASS.__name__
        )
        resolver_class = DEFAULT_TAX_DATE_RESOLVER_CLASS
    return resolver_class(config)


R = TypeVar("R")


class ResolverCache(Generic[R]):
    """
    Tenant ID -> resolver map with an atomic get-or-create.

    The factory runs under the lock, so a tenant's resolver is built at most once even when
    several computations ask for it at the same moment. Entries are never evicted.
    """

    def __init__(self):
        self._resolvers: Dict[UUID, R] = {}
        self._lock = threading.Lock()

    def get_or_create(self, tenant_id: UUID, factory: Callable[[UUID], R]) -> R:
        resolver = self._resolvers.get(tenant_id)
        if resolver is not None:
            return resolver
        with self._lock:
            resolver = self._resolvers.get(tenant_id)
            if resolver is None:
                resolver = factory(tenant_id)
                self._resolvers[tenant_id] = resolver
            return resolver

    def __len__(self):
        return len(self._resolvers)

    def __contains__(self, tenant_id):
        return tenant_id in self._resolvers
