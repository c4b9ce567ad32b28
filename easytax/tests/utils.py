import uuid
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal

from easytax.calculator import EasyTaxTaxCalculator
from easytax.catalog import StaticCatalog
from easytax.config import ConfigurationHandler
from easytax.dao import DjangoEasyTaxDao, TaxCodeInfo
from easytax.invoicing import Account, Invoice, InvoiceItem, InvoiceItemType

GST = "GST"
XST = "XST"
GST_RATE = Decimal("0.15")
XST_RATE = Decimal("0.385")

TEST_PRODUCT_NAME = "test-product"
TEST_PLAN_NAME = "test-plan"

INVOICE_DATE = date(2024, 6, 15)
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=dt_timezone.utc)
RATES_VALID_FROM = datetime(2024, 1, 1, tzinfo=dt_timezone.utc)


def build_account(country="NZ", time_zone="UTC", custom_fields=None):
    return Account(
        id=uuid.uuid4(),
        country=country,
        time_zone=time_zone,
        currency="NZD",
        custom_fields=custom_fields or {},
    )


def build_invoice(account, items=(), invoice_date=INVOICE_DATE):
    return Invoice(
        id=uuid.uuid4(),
        account_id=account.id,
        invoice_date=invoice_date,
        created_date=NOW,
        currency=account.currency,
        items=tuple(items),
    )


def build_invoice_item(
    invoice,
    amount,
    item_type=InvoiceItemType.USAGE,
    linked_item_id=None,
    plan_name=TEST_PLAN_NAME,
    **kwargs,
):
    return InvoiceItem(
        id=uuid.uuid4(),
        invoice_id=invoice.id,
        account_id=invoice.account_id,
        item_type=item_type,
        amount=Decimal(amount),
        currency=invoice.currency,
        linked_item_id=linked_item_id,
        plan_name=plan_name,
        **kwargs,
    )


def with_items(invoice, *items):
    """Return a copy of `invoice` carrying `items`."""
    return Invoice(
        id=invoice.id,
        account_id=invoice.account_id,
        invoice_date=invoice.invoice_date,
        created_date=invoice.created_date,
        currency=invoice.currency,
        items=tuple(invoice.items) + tuple(items),
    )


def build_tax_code(tenant_id, code=GST, rate=GST_RATE, zone="NZ", product=TEST_PRODUCT_NAME, **kwargs):
    kwargs.setdefault("valid_from_date", RATES_VALID_FROM)
    return TaxCodeInfo(
        tenant_id=tenant_id,
        tax_zone=zone,
        product_name=product,
        tax_code=code,
        tax_rate=rate,
        **kwargs,
    )


def build_calculator(dao=None, properties=None, tenant_properties=None, plans=None, clock=lambda: NOW):
    return EasyTaxTaxCalculator(
        dao=dao or DjangoEasyTaxDao(),
        configuration_handler=ConfigurationHandler(properties or {}, tenant_properties or {}),
        catalog=StaticCatalog(plans if plans is not None else {TEST_PLAN_NAME: TEST_PRODUCT_NAME}),
        clock=clock,
    )
