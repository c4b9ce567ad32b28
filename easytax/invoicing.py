from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID


class InvoiceItemType(str, Enum):
    EXTERNAL_CHARGE = "EXTERNAL_CHARGE"
    FIXED = "FIXED"
    RECURRING = "RECURRING"
    USAGE = "USAGE"
    ITEM_ADJ = "ITEM_ADJ"
    REPAIR_ADJ = "REPAIR_ADJ"
    CBA_ADJ = "CBA_ADJ"
    CREDIT_ADJ = "CREDIT_ADJ"
    TAX = "TAX"


TAXABLE_ITEM_TYPES = frozenset(
    {
        InvoiceItemType.EXTERNAL_CHARGE,
        InvoiceItemType.FIXED,
        InvoiceItemType.RECURRING,
        InvoiceItemType.USAGE,
    }
)

ADJUSTMENT_ITEM_TYPES = frozenset({InvoiceItemType.ITEM_ADJ, InvoiceItemType.REPAIR_ADJ})


@dataclass(frozen=True)
class Account:
    id: UUID
    country: Optional[str] = None
    time_zone: Optional[str] = None
    currency: str = "USD"
    custom_fields: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InvoiceItem:
    id: UUID
    invoice_id: UUID
    account_id: UUID
    item_type: InvoiceItemType
    amount: Decimal
    currency: str = "USD"
    linked_item_id: Optional[UUID] = None
    plan_name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_date: Optional[datetime] = None


@dataclass(frozen=True)
class Invoice:
    id: UUID
    account_id: UUID
    invoice_date: date
    created_date: Optional[datetime] = None
    currency: str = "USD"
    items: tuple[InvoiceItem, ...] = ()


def build_tax_item(
    taxable_item: InvoiceItem,
    invoice_id: UUID,
    item_date: date,
    amount: Optional[Decimal],
    tax_code: str,
) -> Optional[InvoiceItem]:
    """
    Build a TAX invoice item for a taxable item.

    The tax item lands on `invoice_id` (the invoice being generated, which may differ from the
    taxable item's own invoice when an older invoice is repaired) and is linked back to the
    taxable item. Returns None when there is no amount to record.
    """
    if amount is None:
        return None
    return InvoiceItem(
        id=uuid.uuid4(),
        invoice_id=invoice_id,
        account_id=taxable_item.account_id,
        item_type=InvoiceItemType.TAX,
        amount=amount,
        currency=taxable_item.currency,
        linked_item_id=taxable_item.id,
        plan_name=taxable_item.plan_name,
        description=tax_code,
        start_date=item_date,
        end_date=None,
    )
