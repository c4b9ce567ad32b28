import uuid
from datetime import date, datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo

from django.test import SimpleTestCase

from easytax.config import EasyTaxConfig
from easytax.resolvers import (
    TAX_ZONE_RESOLVERS,
    AccountCountryTaxZoneResolver,
    AccountCustomFieldTaxZoneResolver,
    DateMode,
    ResolverCache,
    SimpleTaxDateResolver,
    TaxZoneResolver,
    create_tax_date_resolver,
    create_tax_zone_resolver,
    register_tax_zone_resolver,
)

from .utils import NOW, build_account, build_invoice, build_invoice_item


class TaxZoneResolverTests(SimpleTestCase):
    tenant_id = uuid.uuid4()

    def test_custom_field_then_country(self):
        resolver = AccountCustomFieldTaxZoneResolver()
        with_field = build_account(country="NZ", custom_fields={"taxCode": "NZ-AKL"})
        without_field = build_account(country="NZ")

        self.assertEqual(resolver.tax_zone_for_invoice(self.tenant_id, with_field, None), "NZ-AKL")
        self.assertEqual(resolver.tax_zone_for_invoice(self.tenant_id, without_field, None), "NZ")
        self.assertIsNone(resolver.tax_zone_for_invoice(self.tenant_id, None, None))

    def test_country_fallback_can_be_disabled(self):
        config = EasyTaxConfig({AccountCustomFieldTaxZoneResolver.USE_ACCOUNT_COUNTRY_PROPERTY: "false"})
        resolver = AccountCustomFieldTaxZoneResolver(config)
        self.assertIsNone(resolver.tax_zone_for_invoice(self.tenant_id, build_account(country="NZ"), None))

    def test_account_country(self):
        resolver = AccountCountryTaxZoneResolver()
        self.assertEqual(resolver.tax_zone_for_invoice(self.tenant_id, build_account(country="AU"), None), "AU")
        self.assertIsNone(resolver.tax_zone_for_invoice(self.tenant_id, build_account(country=""), None))

    def test_registered_resolver_is_selectable(self):
        @register_tax_zone_resolver("fixed_test_zone")
        class FixedZoneResolver(TaxZoneResolver):
            def tax_zone_for_invoice(self, tenant_id, account, invoice, properties=None):
                return "XX"

        try:
            resolver = create_tax_zone_resolver(EasyTaxConfig({"tax_zone_resolver": "fixed_test_zone"}))
            self.assertIsInstance(resolver, FixedZoneResolver)
            self.assertEqual(resolver.tax_zone_for_invoice(self.tenant_id, None, None), "XX")
        finally:
            TAX_ZONE_RESOLVERS.pop("fixed_test_zone", None)

    def test_unknown_names_use_defaults(self):
        config = EasyTaxConfig({"tax_zone_resolver": "missing", "tax_date_resolver": "missing"})
        with self.assertLogs("easytax.resolvers", level="ERROR") as logs:
            self.assertIsInstance(create_tax_zone_resolver(config), AccountCustomFieldTaxZoneResolver)
            self.assertIsInstance(create_tax_date_resolver(config), SimpleTaxDateResolver)
        self.assertEqual(len(logs.records), 2)


class SimpleTaxDateResolverTests(SimpleTestCase):
    tenant_id = uuid.uuid4()

    def setUp(self):
        self.account = build_account(time_zone="Pacific/Auckland")
        self.invoice = build_invoice(self.account, invoice_date=date(2024, 6, 15))
        self.item = build_invoice_item(self.invoice, "10", start_date=date(2024, 5, 1), end_date=date(2024, 6, 1))

    def resolve(self, properties=None, account=None, item=None):
        resolver = SimpleTaxDateResolver(EasyTaxConfig(properties or {}))
        return resolver.tax_date_for_invoice_item(
            self.tenant_id, account or self.account, self.invoice, item or self.item
        )

    def test_default_mode_uses_end_date_in_account_zone(self):
        self.assertEqual(self.resolve(), datetime(2024, 6, 1, tzinfo=ZoneInfo("Pacific/Auckland")))

    def test_modes(self):
        key = SimpleTaxDateResolver.DATE_MODE_PROPERTY
        self.assertEqual(self.resolve({key: "start"}).date(), date(2024, 5, 1))
        self.assertEqual(self.resolve({key: "invoice"}).date(), date(2024, 6, 15))
        self.assertEqual(self.resolve({key: "end"}).date(), date(2024, 6, 1))

        open_ended = build_invoice_item(self.invoice, "10", start_date=date(2024, 5, 1))
        self.assertEqual(self.resolve({key: "endthenstart"}, item=open_ended).date(), date(2024, 5, 1))
        # "end" does not look at the start date, so the invoice date is used
        self.assertEqual(self.resolve({key: "end"}, item=open_ended).date(), date(2024, 6, 15))

    def test_unknown_mode_is_end_then_start(self):
        self.assertEqual(DateMode.from_property_value("sometimes"), DateMode.END_THEN_START)
        self.assertEqual(DateMode.from_property_value(None), DateMode.END_THEN_START)
        self.assertEqual(DateMode.from_property_value(" Start "), DateMode.START)

    def test_created_date_fallbacks(self):
        properties = {SimpleTaxDateResolver.FALLBACK_TO_INVOICE_DATE_PROPERTY: "false"}
        created = datetime(2024, 6, 10, 8, 30, tzinfo=dt_timezone.utc)
        undated = build_invoice_item(self.invoice, "10", created_date=created)
        self.assertEqual(self.resolve(properties, item=undated), created)

        no_created = build_invoice_item(self.invoice, "10")
        self.assertEqual(self.resolve(properties, item=no_created), NOW)

        properties[SimpleTaxDateResolver.FALLBACK_TO_INVOICE_CREATED_DATE_PROPERTY] = "false"
        self.assertIsNone(self.resolve(properties, item=no_created))

    def test_default_time_zone(self):
        properties = {SimpleTaxDateResolver.DEFAULT_TZ_PROPERTY: "America/New_York"}
        account = build_account(time_zone=None)
        self.assertEqual(
            self.resolve(properties, account=account),
            datetime(2024, 6, 1, tzinfo=ZoneInfo("America/New_York")),
        )

    def test_unknown_account_time_zone_uses_default(self):
        account = build_account(time_zone="Not/AZone")
        with self.assertLogs("easytax.resolvers", level="WARNING"):
            resolved = self.resolve(account=account)
        self.assertEqual(resolved, datetime(2024, 6, 1, tzinfo=ZoneInfo("UTC")))


class ResolverCacheTests(SimpleTestCase):
    def test_get_or_create(self):
        cache = ResolverCache()
        tenant_id = uuid.uuid4()
        created = []

        def factory(t):
            created.append(t)
            return AccountCountryTaxZoneResolver()

        first = cache.get_or_create(tenant_id, factory)
        self.assertIs(cache.get_or_create(tenant_id, factory), first)
        self.assertEqual(created, [tenant_id])
        self.assertIn(tenant_id, cache)
        self.assertEqual(len(cache), 1)
