from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID

from django.db import DatabaseError, models, transaction
from django.utils import timezone

from .exceptions import EasyTaxDaoError
from .models import TaxCode, Taxation

logger = logging.getLogger(__name__)

# taxable item ID -> tax item IDs and adjustment item IDs accounted for
ItemIdMapping = dict[UUID, set[UUID]]


@dataclass(frozen=True)
class TaxCodeInfo:
    tenant_id: UUID
    tax_zone: str
    product_name: str
    tax_code: str
    tax_rate: Decimal
    valid_from_date: datetime
    valid_to_date: Optional[datetime] = None
    created_date: Optional[datetime] = None


@dataclass
class TaxationInfo:
    tenant_id: UUID
    account_id: UUID
    invoice_id: UUID
    total_tax: Decimal = Decimal("0")
    invoice_item_ids: ItemIdMapping = field(default_factory=dict)
    created_date: Optional[datetime] = None
    record_id: Optional[int] = None


def encode_item_id_mapping(mapping: Optional[ItemIdMapping]) -> Optional[dict]:
    if not mapping:
        return None
    return {str(key): sorted(str(v) for v in values) for key, values in mapping.items()}


def decode_item_id_mapping(invoice_id, raw) -> ItemIdMapping:
    if not raw:
        return {}
    try:
        return {UUID(str(key)): {UUID(str(v)) for v in values} for key, values in raw.items()}
    except (AttributeError, TypeError, ValueError) as exc:
        logger.warning("Unable to decode invoice item ID tax mapping for invoice_id %s: %s", invoice_id, exc)
        return {}


class EasyTaxDao(ABC):
    """
    Storage for tax codes (rate lookup) and taxation records (the reconciliation ledger).

    Every method raises EasyTaxDaoError when the underlying store fails.
    """

    def save_tax_code(self, tax_code: TaxCodeInfo) -> None:
        self.save_tax_codes([tax_code])

    @abstractmethod
    def save_tax_codes(self, tax_codes: Iterable[TaxCodeInfo]) -> None:
        """Insert or update tax codes keyed by their identity tuple."""

    @abstractmethod
    def remove_tax_codes(
        self,
        tenant_id: UUID,
        tax_zone: Optional[str] = None,
        product_name: Optional[str] = None,
        tax_code: Optional[str] = None,
    ) -> int:
        """Delete the tenant's tax codes matching the given filters; returns the count."""

    @abstractmethod
    def get_tax_codes(
        self,
        tenant_id: UUID,
        tax_zone: Optional[str] = None,
        product_name: Optional[str] = None,
        tax_code: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> List[TaxCodeInfo]:
        """
        Find tax codes for a tenant.

        With `date`, only codes whose validity window contains it are returned, newest
        valid-from first. Without it, results follow record order.
        """

    @abstractmethod
    def add_taxation(self, taxation: TaxationInfo) -> None:
        """Append a taxation record."""

    @abstractmethod
    def get_taxation(self, tenant_id: UUID, account_id: UUID, invoice_id: UUID) -> List[TaxationInfo]:
        """Return all taxation records for an invoice, oldest first."""


class DjangoEasyTaxDao(EasyTaxDao):
    """EasyTaxDao backed by the Django ORM."""

    def save_tax_codes(self, tax_codes):
        now = timezone.now()
        try:
            with transaction.atomic():
                for tax_code in tax_codes:
                    self._save_tax_code(tax_code, tax_code.created_date or now)
        except DatabaseError as exc:
            raise EasyTaxDaoError(f"Unable to save tax codes: {exc}") from exc

    def _save_tax_code(self, tax_code: TaxCodeInfo, created_date: datetime) -> None:
        updated = TaxCode.objects.filter(
            tenant_id=tax_code.tenant_id,
            tax_zone=tax_code.tax_zone,
            product_name=tax_code.product_name,
            tax_code=tax_code.tax_code,
            valid_from_date=tax_code.valid_from_date,
        ).update(
            tax_rate=tax_code.tax_rate,
            valid_to_date=tax_code.valid_to_date,
            created_date=created_date,
        )
        if updated < 1:
            TaxCode.objects.create(
                tenant_id=tax_code.tenant_id,
                tax_zone=tax_code.tax_zone,
                product_name=tax_code.product_name,
                tax_code=tax_code.tax_code,
                tax_rate=tax_code.tax_rate,
                valid_from_date=tax_code.valid_from_date,
                valid_to_date=tax_code.valid_to_date,
                created_date=created_date,
            )

    def remove_tax_codes(self, tenant_id, tax_zone=None, product_name=None, tax_code=None):
        qs = TaxCode.objects.filter(tenant_id=tenant_id)
        if tax_zone is not None:
            qs = qs.filter(tax_zone=tax_zone)
        if product_name is not None:
            qs = qs.filter(product_name=product_name)
        if tax_code is not None:
            qs = qs.filter(tax_code=tax_code)
        try:
            deleted, _ = qs.delete()
        except DatabaseError as exc:
            raise EasyTaxDaoError(f"Unable to remove tax codes: {exc}") from exc
        return deleted

    def get_tax_codes(self, tenant_id, tax_zone=None, product_name=None, tax_code=None, date=None):
        qs = TaxCode.objects.filter(tenant_id=tenant_id)
        if tax_zone is not None:
            qs = qs.filter(tax_zone=tax_zone)
        if product_name is not None:
            qs = qs.filter(product_name=product_name)
        if tax_code is not None:
            qs = qs.filter(tax_code=tax_code)
        if date is not None:
            qs = qs.filter(valid_from_date__lte=date).filter(
                models.Q(valid_to_date__isnull=True) | models.Q(valid_to_date__gt=date)
            )
            qs = qs.order_by("-valid_from_date", "record_id")
        else:
            qs = qs.order_by("record_id")
        try:
            rows = list(qs)
        except DatabaseError as exc:
            raise EasyTaxDaoError(f"Unable to load tax codes: {exc}") from exc
        return [
            TaxCodeInfo(
                tenant_id=row.tenant_id,
                tax_zone=row.tax_zone,
                product_name=row.product_name,
                tax_code=row.tax_code,
                tax_rate=row.tax_rate,
                valid_from_date=row.valid_from_date,
                valid_to_date=row.valid_to_date,
                created_date=row.created_date,
            )
            for row in rows
        ]

    def add_taxation(self, taxation):
        try:
            row = Taxation.objects.create(
                tenant_id=taxation.tenant_id,
                account_id=taxation.account_id,
                invoice_id=taxation.invoice_id,
                invoice_item_ids=encode_item_id_mapping(taxation.invoice_item_ids),
                total_tax=taxation.total_tax,
                created_date=taxation.created_date or timezone.now(),
            )
        except DatabaseError as exc:
            raise EasyTaxDaoError(f"Unable to save taxation for invoice {taxation.invoice_id}: {exc}") from exc
        taxation.record_id = row.record_id

    def get_taxation(self, tenant_id, account_id, invoice_id):
        qs = Taxation.objects.filter(
            tenant_id=tenant_id,
            account_id=account_id,
            invoice_id=invoice_id,
        ).order_by("record_id")
        try:
            rows = list(qs)
        except DatabaseError as exc:
            raise EasyTaxDaoError(f"Unable to load taxation for invoice {invoice_id}: {exc}") from exc
        return [
            TaxationInfo(
                record_id=row.record_id,
                created_date=row.created_date,
                tenant_id=row.tenant_id,
                account_id=row.account_id,
                invoice_id=row.invoice_id,
                total_tax=row.total_tax,
                invoice_item_ids=decode_item_id_mapping(row.invoice_id, row.invoice_item_ids),
            )
            for row in rows
        ]


class DryRunEasyTaxDao(EasyTaxDao):
    """Reads through to another DAO but drops every write."""

    def __init__(self, delegate: EasyTaxDao):
        self.delegate = delegate

    def save_tax_codes(self, tax_codes):
        logger.debug("Dry run: not saving tax codes")

    def remove_tax_codes(self, tenant_id, tax_zone=None, product_name=None, tax_code=None):
        return 0

    def get_tax_codes(self, tenant_id, tax_zone=None, product_name=None, tax_code=None, date=None):
        return self.delegate.get_tax_codes(tenant_id, tax_zone, product_name, tax_code, date)

    def add_taxation(self, taxation):
        logger.debug("Dry run: not saving taxation for invoice %s", taxation.invoice_id)

    def get_taxation(self, tenant_id, account_id, invoice_id):
        return self.delegate.get_taxation(tenant_id, account_id, invoice_id)
