# tests/test_order.py
import re
from decimal import Decimal
from unittest import mock

import pytest

from storefront.errors import (
    CouponNotValid, InsufficientStock, NotFound, ValidationFailed, VariantNotFound,
)
from storefront.model import Order
from storefront.services import cart_service, order_service
from storefront.services.order_service import LineRequest


@pytest.fixture
def place(customer, pricing, shipping_address):
    def run(lines, **kwargs):
        kwargs.setdefault("shipping_address", shipping_address)
        kwargs.setdefault("payment_method", "cod")
        kwargs.setdefault("config", pricing)
        return order_service.place_order(customer, lines, **kwargs)
    return run


class TestPlaceOrder:

    def test_end_to_end_two_units(self, place, make_product, session):
        p = make_product(price="100", stock=5)
        order = place([LineRequest(p.id, 2)])

        assert order.items_price == Decimal("200.00")
        assert order.shipping_price == Decimal("0")
        assert order.tax_price == Decimal("16.00")
        assert order.total_price == Decimal("216.00")
        session.refresh(p)
        assert p.stock == 3
        assert p.sold_count == 2

    def test_initial_state(self, place, make_product):
        order = place([LineRequest(make_product().id, 1)], payment_method="stripe")
        assert order.order_status == "pending"
        assert order.payment_status == "pending"
        assert re.fullmatch(r"ORD-\d{8}-\d{4}", order.order_number)
        assert [(h.status, h.note) for h in order.status_history] == [("pending", "Order placed")]

    def test_snapshot_is_decoupled_from_catalog(self, place, make_product, session):
        p = make_product(name="Lamp", price="40", stock=3)
        order = place([LineRequest(p.id, 1)])
        p.name = "Renamed lamp"
        p.price = Decimal("999")
        session.commit()
        session.refresh(order)
        item = order.items[0]
        assert (item.name, item.price, item.sku) == ("Lamp", Decimal("40.00"), p.sku)

    def test_variant_line_takes_variant_stock(self, place, make_product, session):
        p = make_product(price="50", variants=[
            {"sku": "SHOE-42", "price": "60", "stock": 4},
            {"sku": "SHOE-43", "price": "60", "stock": 1},
        ])
        order = place([LineRequest(p.id, 3, "shoe-42")])
        session.refresh(p)
        assert [v.stock for v in p.variants] == [1, 1]
        assert p.stock == 2
        assert order.items[0].variant_sku == "SHOE-42"
        assert order.items[0].variant_json["sku"] == "SHOE-42"
        assert order.items_price == Decimal("180.00")

    def test_all_or_nothing(self, place, make_product, session):
        plenty = make_product(stock=10)
        scarce = make_product(name="Scarce", stock=1)
        with pytest.raises(InsufficientStock) as exc:
            place([LineRequest(plenty.id, 3), LineRequest(scarce.id, 2)])
        assert exc.value.product_id == scarce.id
        assert exc.value.shortfall == 1
        session.refresh(plenty)
        session.refresh(scarce)
        assert (plenty.stock, plenty.sold_count) == (10, 0)
        assert scarce.stock == 1
        assert Order.query.count() == 0

    def test_duplicate_lines_are_checked_together(self, place, make_product, session):
        p = make_product(stock=3)
        with pytest.raises(InsufficientStock):
            place([LineRequest(p.id, 2), LineRequest(p.id, 2)])
        session.refresh(p)
        assert p.stock == 3

    def test_lost_race_rolls_back(self, place, make_product, session):
        first = make_product(stock=5)
        second = make_product(stock=5)
        real_take = order_service._take_stock
        calls = []

        def flaky(quote):
            calls.append(quote)
            if len(calls) == 2:
                raise InsufficientStock(quote.product.id, quote.product.name, quote.quantity, 0)
            return real_take(quote)

        with mock.patch.object(order_service, "_take_stock", side_effect=flaky):
            with pytest.raises(InsufficientStock):
                place([LineRequest(first.id, 2), LineRequest(second.id, 2)])
        session.refresh(first)
        assert first.stock == 5

    def test_unknown_variant(self, place, make_product):
        p = make_product(variants=[{"sku": "X-1", "stock": 2}])
        with pytest.raises(VariantNotFound):
            place([LineRequest(p.id, 1, "X-9")])

    def test_unknown_product(self, place):
        with pytest.raises(NotFound):
            place([LineRequest(12345, 1)])

    @pytest.mark.parametrize("kwargs", [
        {"payment_method": "barter"},
        {"shipping_method": "teleport"},
        {"shipping_address": None},
    ])
    def test_rejects_bad_input(self, place, make_product, kwargs):
        with pytest.raises(ValidationFailed):
            place([LineRequest(make_product().id, 1)], **kwargs)

    def test_empty_order(self, place):
        with pytest.raises(ValidationFailed):
            place([])


class TestOrderCoupon:

    def test_coupon_discount_and_redemption(self, place, make_product, make_coupon, session):
        p = make_product(price="100", stock=5)
        coupon = make_coupon(code="TWENTY", discount_value="20", max_discount=Decimal("30"), usage_limit=5)
        order = place([LineRequest(p.id, 2)], coupon_code="twenty")
        # 200 + 0 + 16 - 30
        assert order.coupon_code == "TWENTY"
        assert order.coupon_discount == Decimal("30.00")
        assert order.total_price == Decimal("186.00")
        session.refresh(coupon)
        assert coupon.used_count == 1

    def test_exhausted_coupon_fails_whole_order(self, place, make_product, make_coupon, session):
        p = make_product(stock=5)
        make_coupon(code="ONCE", usage_limit=1, used_count=1)
        with pytest.raises(CouponNotValid):
            place([LineRequest(p.id, 1)], coupon_code="ONCE")
        session.refresh(p)
        assert p.stock == 5

    def test_total_never_negative(self, place, make_product, make_coupon):
        p = make_product(price="5", stock=5)
        make_coupon(code="HUGE", discount_type="fixed", discount_value="500")
        order = place([LineRequest(p.id, 1)], coupon_code="HUGE")
        assert order.coupon_discount == Decimal("5.00")
        # 5 + 10 shipping + 0.40 tax - 5
        assert order.total_price == Decimal("10.40")


class TestNotification:

    def test_notifier_called_after_commit(self, place, make_product, customer):
        notifier = mock.Mock()
        order = place([LineRequest(make_product().id, 1)], notifier=notifier)
        notifier.deliver.assert_called_once_with(order, customer)

    def test_notifier_failure_keeps_order(self, place, make_product, session):
        notifier = mock.Mock()
        notifier.deliver.side_effect = RuntimeError("smtp down")
        p = make_product(stock=5)
        order = place([LineRequest(p.id, 1)], notifier=notifier)
        assert session.get(Order, order.id) is not None
        session.refresh(p)
        assert p.stock == 4


class TestCheckoutCart:

    def test_checkout_uses_cart_and_clears_it(self, customer, make_product, make_coupon, pricing,
                                              shipping_address):
        cart = cart_service.get_or_create_cart(customer.id)
        p = make_product(price="30", stock=5)
        cart_service.add_item(cart, p.id, 2)
        make_coupon(code="CART5", discount_type="fixed", discount_value="5")
        cart_service.apply_coupon(cart, "CART5", pricing)

        order = order_service.checkout_cart(
            cart, customer, shipping_address=shipping_address, payment_method="cod", config=pricing,
        )
        assert order.coupon_code == "CART5"
        assert order.total_items == 2
        assert cart.items == []
        assert cart.coupon_code is None

    def test_empty_cart(self, customer, pricing, shipping_address):
        cart = cart_service.get_or_create_cart(customer.id)
        with pytest.raises(ValidationFailed):
            order_service.checkout_cart(cart, customer, shipping_address=shipping_address,
                                        payment_method="cod", config=pricing)


class TestLineRequest:

    def test_accepts_nested_variant(self):
        req = LineRequest.from_payload({"product": "7", "quantity": "2", "variant": {"sku": "A-1"}})
        assert req == LineRequest(7, 2, "A-1")

    @pytest.mark.parametrize("raw", [{}, {"product_id": 1, "quantity": 0}, {"product_id": 1, "quantity": "x"}, "x"])
    def test_rejects(self, raw):
        with pytest.raises(ValidationFailed):
            LineRequest.from_payload(raw)
