from decimal import Decimal

from django.db import models
from django.utils import timezone


class TaxCode(models.Model):
    """
    A tax rate for a tenant, tax zone, product and code, valid over a half-open date range.

    Identity is (tenant, tax zone, product, code, valid from). The valid-to date is not part
    of it, so a rate can be closed off or extended without creating a second row.
    """

    record_id = models.BigAutoField(primary_key=True)
    tenant_id = models.UUIDField(db_index=True)
    tax_zone = models.CharField(max_length=36)
    product_name = models.CharField(max_length=255)
    tax_code = models.CharField(max_length=255)
    tax_rate = models.DecimalField(
        max_digits=15,
        decimal_places=9,
        help_text="Stored as decimal (0.15 for 15%).",
    )
    valid_from_date = models.DateTimeField(help_text="Inclusive start of the validity window.")
    valid_to_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Exclusive end of the validity window; empty means open-ended.",
    )
    created_date = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "easytax_tax_codes"
        ordering = ["record_id"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "tax_zone", "product_name", "tax_code", "valid_from_date"],
                name="easytax_tax_code_identity",
            )
        ]
        indexes = [
            models.Index(
                fields=["tenant_id", "tax_zone", "product_name", "valid_from_date"],
                name="easytax_tc_lookup_idx",
            )
        ]

    def __str__(self):
        return f"{self.tax_zone}/{self.product_name} {self.tax_code} @ {self.tax_rate} from {self.valid_from_date}"


class Taxation(models.Model):
    """
    Ledger entry recording which invoice items have been taxed for an invoice.

    `invoice_item_ids` maps a taxable item ID to the tax item IDs generated for it, together
    with the adjustment item IDs already accounted for. Rows are only ever appended.
    """

    record_id = models.BigAutoField(primary_key=True)
    tenant_id = models.UUIDField()
    account_id = models.UUIDField()
    invoice_id = models.UUIDField()
    invoice_item_ids = models.JSONField(null=True, blank=True)
    total_tax = models.DecimalField(max_digits=15, decimal_places=9, default=Decimal("0"))
    created_date = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "easytax_taxations"
        ordering = ["record_id"]
        indexes = [
            models.Index(
                fields=["tenant_id", "account_id", "invoice_id"],
                name="easytax_taxation_invoice_idx",
            )
        ]

    def __str__(self):
        return f"Taxation {self.record_id} invoice={self.invoice_id} total={self.total_tax}"
