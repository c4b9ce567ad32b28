from decimal import Decimal

from django.db import migrations, models
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="TaxCode",
            fields=[
                ("record_id", models.BigAutoField(primary_key=True, serialize=False)),
                ("tenant_id", models.UUIDField(db_index=True)),
                ("tax_zone", models.CharField(max_length=36)),
                ("product_name", models.CharField(max_length=255)),
                ("tax_code", models.CharField(max_length=255)),
                ("tax_rate", models.DecimalField(decimal_places=9, help_text="Stored as decimal (0.15 for 15%).", max_digits=15)),
                ("valid_from_date", models.DateTimeField(help_text="Inclusive start of the validity window.")),
                ("valid_to_date", models.DateTimeField(blank=True, help_text="Exclusive end of the validity window; empty means open-ended.", null=True)),
                ("created_date", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "easytax_tax_codes",
                "ordering": ["record_id"],
            },
        ),
        migrations.CreateModel(
            name="Taxation",
            fields=[
                ("record_id", models.BigAutoField(primary_key=True, serialize=False)),
                ("tenant_id", models.UUIDField()),
                ("account_id", models.UUIDField()),
                ("invoice_id", models.UUIDField()),
                ("invoice_item_ids", models.JSONField(blank=True, null=True)),
                ("total_tax", models.DecimalField(decimal_places=9, default=Decimal("0"), max_digits=15)),
                ("created_date", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "easytax_taxations",
                "ordering": ["record_id"],
            },
        ),
        migrations.AddConstraint(
            model_name="taxcode",
            constraint=models.UniqueConstraint(
                fields=("tenant_id", "tax_zone", "product_name", "tax_code", "valid_from_date"),
                name="easytax_tax_code_identity",
            ),
        ),
        migrations.AddIndex(
            model_name="taxcode",
            index=models.Index(fields=["tenant_id", "tax_zone", "product_name", "valid_from_date"], name="easytax_tc_lookup_idx"),
        ),
        migrations.AddIndex(
            model_name="taxation",
            index=models.Index(fields=["tenant_id", "account_id", "invoice_id"], name="easytax_taxation_invoice_idx"),
        ),
    ]
