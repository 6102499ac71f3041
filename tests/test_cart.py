# tests/test_cart.py
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.errors import (
    BelowMinimumPurchase, InsufficientStock, NotFound, ValidationFailed, VariantNotFound,
)
from storefront.services import cart_service
from storefront.utils.dates import utcnow


@pytest.fixture
def cart(customer):
    return cart_service.get_or_create_cart(customer.id)


class TestCartItems:

    def test_one_cart_per_user(self, customer, cart):
        assert cart_service.get_or_create_cart(customer.id).id == cart.id

    def test_add_merges_same_product(self, cart, make_product):
        p = make_product(stock=10)
        cart_service.add_item(cart, p.id, 2)
        cart_service.add_item(cart, p.id, 3)
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 5

    def test_different_variants_are_separate_lines(self, cart, make_product):
        p = make_product(variants=[{"sku": "S-RED", "stock": 3}, {"sku": "S-BLU", "stock": 3}])
        cart_service.add_item(cart, p.id, 1, variant_sku="S-RED")
        cart_service.add_item(cart, p.id, 1, variant_sku="s-blu")
        cart_service.add_item(cart, p.id, 1, variant_sku="S-RED")
        assert [(i.variant_sku, i.quantity) for i in cart.items] == [("S-RED", 2), ("S-BLU", 1)]
        assert cart.items[0].variant_json["sku"] == "S-RED"

    def test_add_beyond_stock(self, cart, make_product):
        p = make_product(stock=2)
        cart_service.add_item(cart, p.id, 2)
        with pytest.raises(InsufficientStock) as exc:
            cart_service.add_item(cart, p.id, 1)
        assert exc.value.shortfall == 1
        assert exc.value.details["product_id"] == p.id

    def test_add_unknown_variant(self, cart, make_product):
        p = make_product(variants=[{"sku": "ONLY", "stock": 3}])
        with pytest.raises(VariantNotFound):
            cart_service.add_item(cart, p.id, 1, variant_sku="OTHER")

    def test_add_inactive_product(self, cart, make_product):
        p = make_product(is_active=False)
        with pytest.raises(NotFound):
            cart_service.add_item(cart, p.id, 1)

    def test_add_requires_positive_quantity(self, cart, make_product):
        with pytest.raises(ValidationFailed):
            cart_service.add_item(cart, make_product().id, 0)

    def test_update_to_zero_removes_line(self, cart, make_product):
        item = cart_service.add_item(cart, make_product().id, 2)
        assert cart_service.update_item(cart, item.id, 0) is None
        assert cart.items == []

    def test_update_quantity(self, cart, make_product):
        item = cart_service.add_item(cart, make_product(price="12.50", stock=9).id, 1)
        cart_service.update_item(cart, item.id, 4)
        assert item.quantity == 4
        assert item.total == Decimal("50.00")

    def test_update_unknown_item(self, cart):
        with pytest.raises(NotFound):
            cart_service.update_item(cart, 999, 1)

    def test_clear(self, cart, make_product, make_coupon):
        cart_service.add_item(cart, make_product().id, 1)
        cart.coupon_code = make_coupon().code
        cart_service.clear_cart(cart)
        assert cart.items == []
        assert cart.coupon_code is None


class TestCartTotals:

    def test_summary(self, cart, make_product, pricing):
        cart_service.add_item(cart, make_product(price="20", stock=5).id, 2)
        totals = cart_service.recalc_cart(cart, pricing)
        s = totals.summary
        assert (s.subtotal, s.shipping, s.tax, s.total) == (
            Decimal("40.00"), Decimal("10.00"), Decimal("3.20"), Decimal("53.20"),
        )
        assert totals.total_items == 2

    def test_recalc_is_idempotent(self, cart, make_product, pricing):
        cart_service.add_item(cart, make_product(price="33.33", stock=5).id, 3)
        cart_service.add_item(cart, make_product(price="0.99", stock=5).id, 1)
        first = cart_service.recalc_cart(cart, pricing).summary
        second = cart_service.recalc_cart(cart, pricing).summary
        assert first == second

    def test_reprices_against_live_catalog(self, cart, make_product, pricing, session):
        p = make_product(price="10", stock=5)
        cart_service.add_item(cart, p.id, 2)
        p.price = Decimal("15")
        session.commit()
        totals = cart_service.recalc_cart(cart, pricing)
        assert totals.summary.subtotal == Decimal("30.00")
        assert cart.items[0].price == Decimal("15.00")

    def test_inactive_product_kept_but_not_counted(self, cart, make_product, pricing, session):
        keep = make_product(price="10", stock=5)
        gone = make_product(price="99", stock=5)
        cart_service.add_item(cart, keep.id, 1)
        cart_service.add_item(cart, gone.id, 1)
        gone.is_active = False
        session.commit()
        totals = cart_service.recalc_cart(cart, pricing)
        assert len(cart.items) == 2
        assert totals.summary.subtotal == Decimal("10.00")
        assert [i.in_stock for i in cart.items] == [True, False]

    def test_stock_drop_clamps_line(self, cart, make_product, pricing, session):
        p = make_product(price="10", stock=5)
        cart_service.add_item(cart, p.id, 4)
        p.stock = 1
        session.commit()
        totals = cart_service.recalc_cart(cart, pricing)
        assert totals.summary.subtotal == Decimal("10.00")


class TestCartCoupon:

    def test_apply_coupon(self, cart, make_product, make_coupon, pricing):
        cart_service.add_item(cart, make_product(price="100", stock=5).id, 1)
        make_coupon(code="TENOFF", discount_type="fixed", discount_value="10")
        totals = cart_service.apply_coupon(cart, "tenoff", pricing)
        assert cart.coupon_code == "TENOFF"
        assert totals.discount == Decimal("10.00")
        assert totals.coupon["valid"] is True
        # 100 + 0 shipping + 8 tax - 10
        assert totals.payable == Decimal("98.00")

    def test_apply_below_minimum(self, cart, make_product, make_coupon, pricing):
        cart_service.add_item(cart, make_product(price="10", stock=5).id, 1)
        make_coupon(code="BIG", min_purchase=Decimal("50"))
        with pytest.raises(BelowMinimumPurchase):
            cart_service.apply_coupon(cart, "BIG", pricing)
        assert cart.coupon_code is None

    def test_coupon_recomputed_on_view(self, cart, make_product, make_coupon, pricing, session):
        cart_service.add_item(cart, make_product(price="100", stock=5).id, 1)
        coupon = make_coupon(code="LATER", discount_value="10")
        cart_service.apply_coupon(cart, "LATER", pricing)

        coupon.end_date = utcnow() - timedelta(minutes=1)
        session.commit()
        totals = cart_service.recalc_cart(cart, pricing)
        assert totals.discount == Decimal("0")
        assert totals.coupon["valid"] is False
        assert cart.coupon_code == "LATER"

    def test_remove_coupon(self, cart, make_product, make_coupon, pricing):
        cart_service.add_item(cart, make_product().id, 1)
        make_coupon(code="GONE")
        cart_service.apply_coupon(cart, "GONE", pricing)
        cart_service.remove_coupon(cart)
        assert cart_service.recalc_cart(cart, pricing).coupon is None
