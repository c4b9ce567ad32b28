from __future__ import annotations

import logging
import threading
from collections import OrderedDict, defaultdict
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from django.apps import apps

from .calculator import EasyTaxTaxCalculator
from .catalog import CatalogLookup, StaticCatalog
from .config import ConfigurationHandler
from .dao import DjangoEasyTaxDao, DryRunEasyTaxDao, EasyTaxDao
from .invoicing import ADJUSTMENT_ITEM_TYPES, TAXABLE_ITEM_TYPES, Account, Invoice, InvoiceItem

logger = logging.getLogger(__name__)


def taxable_items_for_invoice(invoice: Invoice) -> Dict[UUID, InvoiceItem]:
    return OrderedDict((item.id, item) for item in invoice.items if item.item_type in TAXABLE_ITEM_TYPES)


def adjustment_items_for_taxable_items(
    taxable_items: Dict[UUID, InvoiceItem],
    invoices: Iterable[Invoice],
) -> Dict[UUID, List[InvoiceItem]]:
    """Group adjustment items from any invoice under the taxable item they are linked to."""
    adjustments: Dict[UUID, List[InvoiceItem]] = defaultdict(list)
    for invoice in invoices:
        for item in invoice.items:
            if item.item_type in ADJUSTMENT_ITEM_TYPES and item.linked_item_id in taxable_items:
                adjustments[item.linked_item_id].append(item)
    return dict(adjustments)


class TaxInvoiceService:
    """
    Entry point used by the invoicing pipeline.

    Owns the calculator (and so the per-tenant resolver caches) for the life of the process.
    Computations for the same tenant and invoice are serialized in-process; deployments with
    several worker processes must serialize them upstream as well.
    """

    def __init__(self, calculator: EasyTaxTaxCalculator):
        self.calculator = calculator
        # (tenant ID, invoice ID) -> [lock, number of callers holding or waiting on it]
        self._invoice_locks: Dict[Tuple[Optional[UUID], UUID], list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _invoice_lock(self, tenant_id: Optional[UUID], invoice_id: UUID):
        key = (tenant_id, invoice_id)
        with self._locks_guard:
            entry = self._invoice_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._invoice_locks[key]

    def compute(
        self,
        account: Account,
        new_invoice: Invoice,
        invoice: Invoice,
        taxable_items,
        adjustment_items,
        dry_run: bool = False,
        properties=None,
        tenant_id: Optional[UUID] = None,
    ) -> List[InvoiceItem]:
        calculator = self.calculator
        if dry_run:
            calculator = calculator.with_dao(DryRunEasyTaxDao(calculator.dao))
        with self._invoice_lock(tenant_id, invoice.id):
            return calculator.compute(
                account, new_invoice, invoice, taxable_items, adjustment_items, dry_run, properties, tenant_id
            )

    def additional_tax_items(
        self,
        account: Account,
        new_invoice: Invoice,
        invoices: Iterable[Invoice] = (),
        dry_run: bool = False,
        properties=None,
        tenant_id: Optional[UUID] = None,
    ) -> List[InvoiceItem]:
        """
        Compute the tax items to add to `new_invoice`.

        `invoices` are the account's existing invoices. Each invoice holding taxable items is
        reconciled on its own, so adjustments made on `new_invoice` against items of an older
        invoice yield corrective tax items on `new_invoice`.
        """
        all_invoices = [inv for inv in invoices if inv.id != new_invoice.id]
        all_invoices.append(new_invoice)

        tax_items: List[InvoiceItem] = []
        for invoice in all_invoices:
            taxable_items = taxable_items_for_invoice(invoice)
            if not taxable_items:
                continue
            adjustment_items = adjustment_items_for_taxable_items(taxable_items, all_invoices)
            logger.debug(
                "Reconciling %d taxable item(s) of invoice %s for new invoice %s",
                len(taxable_items),
                invoice.id,
                new_invoice.id,
            )
            tax_items.extend(
                self.compute(
                    account, new_invoice, invoice, taxable_items, adjustment_items, dry_run, properties, tenant_id
                )
            )
        return tax_items


def build_tax_invoice_service(
    dao: Optional[EasyTaxDao] = None,
    configuration_handler: Optional[ConfigurationHandler] = None,
    catalog: Optional[CatalogLookup] = None,
) -> TaxInvoiceService:
    calculator = EasyTaxTaxCalculator(
        dao=dao or DjangoEasyTaxDao(),
        configuration_handler=configuration_handler or ConfigurationHandler.from_settings(),
        catalog=catalog or StaticCatalog.from_settings(),
    )
    return TaxInvoiceService(calculator)


def get_tax_invoice_service() -> TaxInvoiceService:
    return apps.get_app_config("easytax").tax_service
