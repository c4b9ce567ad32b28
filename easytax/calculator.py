from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Callable, Collection, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from django.utils import timezone

from .catalog import CatalogLookup
from .config import ConfigurationHandler, EasyTaxConfig
from .dao import EasyTaxDao, ItemIdMapping, TaxationInfo
from .exceptions import CatalogLookupError
from .invoicing import Account, Invoice, InvoiceItem, build_tax_item
from .resolvers import (
    ResolverCache,
    TaxDateResolver,
    TaxZoneResolver,
    create_tax_date_resolver,
    create_tax_zone_resolver,
)

logger = logging.getLogger(__name__)


def merge_taxations(taxations: List[TaxationInfo]) -> ItemIdMapping:
    """Union the item ID mappings of every taxation record for one invoice."""
    if not taxations:
        return {}
    if len(taxations) == 1:
        return taxations[0].invoice_item_ids or {}
    merged: ItemIdMapping = {}
    for taxation in taxations:
        for taxable_id, item_ids in (taxation.invoice_item_ids or {}).items():
            merged.setdefault(taxable_id, set()).update(item_ids)
    return merged


def classify_items(
    taxable_items: Mapping[UUID, InvoiceItem],
    adjustment_items: Mapping[UUID, Collection[InvoiceItem]],
    already_taxed: ItemIdMapping,
):
    """
    Split taxable items into those needing sales tax and those needing return tax.

    Returns (sales_items, return_items, adjustments_for_return_items). An item never taxed
    before needs sales tax; an item with adjustments not yet recorded against it needs
    return tax on just those adjustments. An untaxed item with adjustments needs both.
    """
    sales_items: Dict[UUID, InvoiceItem] = OrderedDict()
    return_items: Dict[UUID, InvoiceItem] = OrderedDict()
    adjustments_for_return_items: Dict[UUID, List[InvoiceItem]] = OrderedDict()

    for taxable_id, taxable_item in taxable_items.items():
        taxed_ids = already_taxed.get(taxable_id)
        if taxed_ids is None:
            sales_items[taxable_id] = taxable_item

        new_adjustments = [
            adj for adj in (adjustment_items.get(taxable_id) or ()) if taxed_ids is None or adj.id not in taxed_ids
        ]
        if new_adjustments:
            return_items[taxable_id] = taxable_item
            adjustments_for_return_items[taxable_id] = new_adjustments

    return sales_items, return_items, adjustments_for_return_items


def tax_amount(config: EasyTaxConfig, tax_rate: Decimal, net_amount: Decimal) -> Decimal:
    """Multiply exactly, then round once with the tenant's scale and rounding mode."""
    with localcontext() as ctx:
        digits = len(tax_rate.as_tuple().digits) + len(net_amount.as_tuple().digits)
        ctx.prec = max(ctx.prec, digits + max(config.tax_scale, 0))
        return config.round_tax(tax_rate * net_amount)


class EasyTaxTaxCalculator:
    """
    Computes tax invoice items from the tax codes in the database.

    Each call to `compute` reconciles the invoice's taxable and adjustment items against the
    taxation records already stored for that invoice, so items are taxed once and each
    adjustment produces one corrective tax item. A taxation record is appended whenever new
    tax items are produced.

    Calls for the same invoice must not run concurrently; the read-compute-append sequence is
    not atomic.
    """

    def __init__(
        self,
        dao: EasyTaxDao,
        configuration_handler: ConfigurationHandler,
        catalog: CatalogLookup,
        clock: Callable[[], datetime] = timezone.now,
        zone_resolver_cache: Optional[ResolverCache[TaxZoneResolver]] = None,
        date_resolver_cache: Optional[ResolverCache[TaxDateResolver]] = None,
    ):
        self.dao = dao
        self.configuration_handler = configuration_handler
        self.catalog = catalog
        self.clock = clock
        self.zone_resolver_cache = zone_resolver_cache if zone_resolver_cache is not None else ResolverCache()
        self.date_resolver_cache = date_resolver_cache if date_resolver_cache is not None else ResolverCache()
        # tenant ID (None = any tenant) -> explicitly bound resolver
        self._bound_zone_resolvers: Dict[Optional[UUID], TaxZoneResolver] = {}
        self._bound_date_resolvers: Dict[Optional[UUID], TaxDateResolver] = {}
        self._bind_lock = threading.Lock()

    def with_dao(self, dao: EasyTaxDao) -> "EasyTaxTaxCalculator":
        """Return a calculator sharing this one's caches and bindings but using another DAO."""
        other = EasyTaxTaxCalculator(
            dao,
            self.configuration_handler,
            self.catalog,
            clock=self.clock,
            zone_resolver_cache=self.zone_resolver_cache,
            date_resolver_cache=self.date_resolver_cache,
        )
        other._bound_zone_resolvers = self._bound_zone_resolvers
        other._bound_date_resolvers = self._bound_date_resolvers
        other._bind_lock = self._bind_lock
        return other

    # --- resolvers ---

    def bind_tax_zone_resolver(self, resolver: TaxZoneResolver, tenant_id: Optional[UUID] = None) -> None:
        """Use `resolver` for `tenant_id` (or every tenant) instead of the configured one."""
        with self._bind_lock:
            self._bound_zone_resolvers[tenant_id] = resolver

    def bind_tax_date_resolver(self, resolver: TaxDateResolver, tenant_id: Optional[UUID] = None) -> None:
        with self._bind_lock:
            self._bound_date_resolvers[tenant_id] = resolver

    def tax_zone_resolver(self, tenant_id: UUID) -> TaxZoneResolver:
        bound = self._bound_zone_resolvers.get(tenant_id) or self._bound_zone_resolvers.get(None)
        if bound is not None:
            return bound
        return self.zone_resolver_cache.get_or_create(
            tenant_id, lambda t: create_tax_zone_resolver(self.configuration_handler.get_config(t))
        )

    def tax_date_resolver(self, tenant_id: UUID) -> TaxDateResolver:
        bound = self._bound_date_resolvers.get(tenant_id) or self._bound_date_resolvers.get(None)
        if bound is not None:
            return bound
        return self.date_resolver_cache.get_or_create(
            tenant_id, lambda t: create_tax_date_resolver(self.configuration_handler.get_config(t))
        )

    # --- computation ---

    def compute(
        self,
        account: Account,
        new_invoice: Invoice,
        invoice: Invoice,
        taxable_items: Mapping[UUID, InvoiceItem],
        adjustment_items: Mapping[UUID, Collection[InvoiceItem]],
        dry_run: bool = False,
        properties: Optional[Iterable] = None,
        tenant_id: Optional[UUID] = None,
    ) -> List[InvoiceItem]:
        """
        Compute the new tax items for `invoice`, placing them on `new_invoice`.

        Collaborator failures are logged and yield an empty list; this method does not raise
        for them. `dry_run` is informational: callers wanting no ledger write pass a
        calculator whose DAO drops writes (see `with_dao`).
        """
        try:
            tax_zone = self.tax_zone_resolver(tenant_id).tax_zone_for_invoice(tenant_id, account, invoice, properties)
        except Exception:
            logger.exception("Unable to resolve tax zone for invoice %s", invoice.id)
            return []
        if tax_zone is None:
            logger.debug("No tax zone for invoice %s; nothing to tax", invoice.id)
            return []

        try:
            taxations = self.dao.get_taxation(tenant_id, account.id, invoice.id)
        except Exception:
            logger.warning("Unable to compute tax for account %s", account.id, exc_info=True)
            return []
        already_taxed = merge_taxations(taxations)

        sales_items, return_items, adjustments_for_return_items = classify_items(
            taxable_items, adjustment_items, already_taxed
        )
        if not sales_items and not return_items:
            return []

        plan_to_product: Dict[str, Optional[str]] = {}
        now = self.clock()
        try:
            new_tax_items = self._tax_items(
                account, new_invoice, sales_items, None, tax_zone, plan_to_product, tenant_id, now, properties
            )
            new_tax_items += self._tax_items(
                account,
                new_invoice,
                return_items,
                adjustments_for_return_items,
                tax_zone,
                plan_to_product,
                tenant_id,
                now,
                properties,
            )
        except Exception:
            logger.warning("Unable to compute tax for account %s", account.id, exc_info=True)
            return []

        if not new_tax_items:
            return []

        taxation = self._build_taxation(account, invoice, adjustment_items, new_tax_items, tenant_id, now)
        try:
            self.dao.add_taxation(taxation)
        except Exception:
            logger.exception("Error saving taxation record for invoice %s", invoice.id)
            return []

        logger.info(
            "Computed %d tax item(s) totalling %s for invoice %s (zone %s)",
            len(new_tax_items),
            taxation.total_tax,
            invoice.id,
            tax_zone,
        )
        return list(new_tax_items)

    def _build_taxation(self, account, invoice, adjustment_items, new_tax_items, tenant_id, now) -> TaxationInfo:
        item_ids: ItemIdMapping = {
            taxable_id: {adj.id for adj in adjustments} for taxable_id, adjustments in adjustment_items.items()
        }
        total_tax = Decimal("0")
        for tax_item in new_tax_items:
            total_tax += tax_item.amount
            item_ids.setdefault(tax_item.linked_item_id, set()).add(tax_item.id)
        return TaxationInfo(
            created_date=now,
            tenant_id=tenant_id,
            account_id=account.id,
            invoice_id=invoice.id,
            total_tax=total_tax,
            invoice_item_ids=item_ids,
        )

    def _tax_items(
        self,
        account: Account,
        new_invoice: Invoice,
        items: Mapping[UUID, InvoiceItem],
        adjustments: Optional[Mapping[UUID, List[InvoiceItem]]],
        tax_zone: str,
        plan_to_product: Dict[str, Optional[str]],
        tenant_id: UUID,
        now: datetime,
        properties,
    ) -> List[InvoiceItem]:
        result: List[InvoiceItem] = []
        for taxable_id, taxable_item in items.items():
            if adjustments is None:
                net_amount = taxable_item.amount
            else:
                net_amount = sum((adj.amount for adj in adjustments[taxable_id]), Decimal("0"))
            result.extend(
                self._tax_items_for_item(
                    account, new_invoice, taxable_item, tax_zone, net_amount, plan_to_product, tenant_id, now, properties
                )
            )
        return result

    def _tax_items_for_item(
        self, account, new_invoice, taxable_item, tax_zone, net_amount, plan_to_product, tenant_id, now, properties
    ) -> List[InvoiceItem]:
        tax_date = self._tax_date(tenant_id, account, new_invoice, taxable_item, properties) or now

        product_name = self._product_name(taxable_item, plan_to_product, tenant_id)
        if product_name is None:
            logger.debug("No product for invoice item %s; not taxed", taxable_item.id)
            return []

        tax_codes = self.dao.get_tax_codes(tenant_id, tax_zone, product_name, None, tax_date)
        if not tax_codes:
            return []

        config = self.configuration_handler.get_config(tenant_id)
        tax_items = []
        for tax_code in tax_codes:
            amount = tax_amount(config, tax_code.tax_rate, net_amount)
            tax_item = build_tax_item(taxable_item, new_invoice.id, new_invoice.invoice_date, amount, tax_code.tax_code)
            if tax_item is not None:
                tax_items.append(tax_item)
        return tax_items

    def _tax_date(self, tenant_id, account, invoice, item, properties) -> Optional[datetime]:
        try:
            return self.tax_date_resolver(tenant_id).tax_date_for_invoice_item(
                tenant_id, account, invoice, item, properties
            )
        except Exception:
            logger.warning("Unable to resolve tax date for invoice item %s; using current time", item.id, exc_info=True)
            return None

    def _product_name(self, item: InvoiceItem, plan_to_product: Dict[str, Optional[str]], tenant_id) -> Optional[str]:
        plan_name = item.plan_name
        if plan_name is None:
            return None
        if plan_name not in plan_to_product:
            try:
                plan_to_product[plan_name] = self.catalog.product_for_plan(plan_name, tenant_id, item.account_id)
            except CatalogLookupError as exc:
                logger.debug("Catalog lookup failed for plan %s: %s", plan_name, exc)
                plan_to_product[plan_name] = None
            except Exception:
                logger.warning("Catalog unavailable for plan %s", plan_name, exc_info=True)
                plan_to_product[plan_name] = None
        return plan_to_product[plan_name]
