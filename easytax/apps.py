from django.apps import AppConfig


class EasyTaxAppConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "easytax"
    verbose_name = "EasyTax"

    def ready(self):
        # One long-lived service per process; it owns the per-tenant resolver caches.
        from .services import build_tax_invoice_service

        self.tax_service = build_tax_invoice_service()
