# tests/test_pricing.py
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.config import PricingConfig
from storefront.errors import VariantNotFound
from storefront.services.pricing import resolve_line, shipping_for, summarize, unit_price
from storefront.utils.dates import utcnow


class TestResolveLine:
    """Price and stock resolution for a single line."""

    def test_base_product(self, make_product):
        product = make_product(price="19.99", stock=4)
        quote = resolve_line(product, None, 3)
        assert quote.unit_price == Decimal("19.99")
        assert quote.quantity == 3
        assert quote.line_total == Decimal("59.97")
        assert quote.sku == product.sku
        assert quote.in_stock

    def test_quantity_clamped_to_stock(self, make_product):
        product = make_product(stock=2)
        quote = resolve_line(product, None, 5)
        assert quote.quantity == 2
        assert quote.shortfall == 3

    def test_negative_quantity_is_zero(self, make_product):
        quote = resolve_line(make_product(stock=2), None, -4)
        assert quote.quantity == 0
        assert not quote.in_stock

    def test_variant_price_and_stock(self, make_product):
        product = make_product(price="100", variants=[
            {"sku": "TEE-RED-M", "price": "120", "stock": 2},
            {"sku": "TEE-BLU-M", "price": "110", "stock": 7},
        ])
        assert product.stock == 9
        quote = resolve_line(product, "tee-red-m", 5)
        assert quote.unit_price == Decimal("120")
        assert quote.available == 2
        assert quote.quantity == 2
        assert quote.sku == "TEE-RED-M"

    def test_unknown_variant_is_an_error(self, make_product):
        product = make_product(variants=[{"sku": "A-1", "stock": 1}])
        with pytest.raises(VariantNotFound) as exc:
            resolve_line(product, "NOPE", 1)
        assert exc.value.status_code == 400

    def test_active_sale_overrides_variant_price(self, make_product):
        now = utcnow()
        product = make_product(
            price="100",
            is_on_sale=True,
            sale_price=Decimal("80"),
            sale_start=now - timedelta(days=1),
            sale_end=now + timedelta(days=1),
            variants=[{"sku": "V-1", "price": "120", "stock": 3}],
        )
        assert unit_price(product, product.variants[0], now) == Decimal("80")

    def test_sale_outside_window_is_ignored(self, make_product):
        now = utcnow()
        product = make_product(
            price="100",
            is_on_sale=True,
            sale_price=Decimal("80"),
            sale_start=now + timedelta(days=1),
        )
        assert unit_price(product, None, now) == Decimal("100")

    def test_sale_without_window(self, make_product):
        product = make_product(price="100", is_on_sale=True, sale_price=Decimal("75"))
        assert unit_price(product, None) == Decimal("75")


class TestSummary:

    def test_free_shipping_at_threshold(self):
        assert shipping_for(Decimal("50"), PricingConfig()) == Decimal("0")

    def test_flat_fee_just_below_threshold(self):
        assert shipping_for(Decimal("49.99"), PricingConfig()) == Decimal("10.00")

    def test_summary_adds_up(self):
        s = summarize(Decimal("200"), PricingConfig())
        assert (s.subtotal, s.shipping, s.tax, s.total) == (
            Decimal("200.00"), Decimal("0"), Decimal("16.00"), Decimal("216.00"),
        )

    def test_rounds_once_on_the_accumulated_subtotal(self):
        # three lines of 0.333 would drift to 0.99 when rounded one by one
        raw = Decimal("0.333") * 3
        s = summarize(raw, PricingConfig())
        assert s.subtotal == Decimal("1.00")

    def test_configurable_rates(self):
        cfg = PricingConfig(free_shipping_threshold=Decimal("100"), flat_shipping_fee=Decimal("5"),
                            tax_rate=Decimal("0.2"), currency="EUR")
        s = summarize(Decimal("60"), cfg)
        assert s.shipping == Decimal("5.00")
        assert s.tax == Decimal("12.00")
        assert s.total == Decimal("77.00")
