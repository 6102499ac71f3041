# tests/test_lifecycle.py
from datetime import datetime
from decimal import Decimal

import pytest

from storefront.errors import InvalidTransition, ValidationFailed
from storefront.services import order_lifecycle, order_service
from storefront.services.order_service import LineRequest


@pytest.fixture
def make_order(customer, pricing, shipping_address):
    def factory(lines):
        return order_service.place_order(
            customer, lines, shipping_address=shipping_address, payment_method="stripe", config=pricing,
        )
    return factory


class TestStatusTransitions:

    def test_happy_path_appends_one_entry_per_step(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        for i, status in enumerate(["confirmed", "processing", "shipped", "delivered"], start=2):
            order_lifecycle.update_status(order, status)
            assert order.order_status == status
            assert len(order.status_history) == i
        assert order.delivered_at is not None
        assert [h.status for h in order.status_history] == [
            "pending", "confirmed", "processing", "shipped", "delivered",
        ]

    def test_tracking_details(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        order_lifecycle.update_status(order, "confirmed")
        order_lifecycle.update_status(order, "processing")
        order_lifecycle.update_status(order, "shipped", note="Handed to carrier",
                                      tracking_number="1Z999", carrier="UPS",
                                      estimated_delivery=datetime(2030, 1, 5))
        assert (order.tracking_number, order.carrier) == ("1Z999", "UPS")
        assert order.estimated_delivery == datetime(2030, 1, 5)
        assert order.status_history[-1].note == "Handed to carrier"

    def test_skipping_a_step_is_rejected(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        with pytest.raises(InvalidTransition):
            order_lifecycle.update_status(order, "shipped")
        assert order.order_status == "pending"
        assert len(order.status_history) == 1

    def test_unknown_status(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        with pytest.raises(ValidationFailed):
            order_lifecycle.update_status(order, "lost")


class TestCancel:

    def test_cancel_restores_stock_exactly(self, make_order, make_product, session):
        plain = make_product(stock=5)
        sized = make_product(variants=[{"sku": "CAP-S", "stock": 3}, {"sku": "CAP-L", "stock": 2}])
        order = make_order([LineRequest(plain.id, 2), LineRequest(sized.id, 2, "CAP-S")])

        order_lifecycle.cancel_order(order, "Changed my mind")

        session.refresh(plain)
        session.refresh(sized)
        assert (plain.stock, plain.sold_count) == (5, 0)
        assert (sized.stock, sized.sold_count) == (5, 0)
        assert [v.stock for v in sized.variants] == [3, 2]
        assert order.order_status == "cancelled"
        assert order.cancelled_reason == "Changed my mind"
        assert order.cancelled_at is not None
        assert order.status_history[-1].status == "cancelled"

    def test_cancel_from_confirmed(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        order_lifecycle.update_status(order, "confirmed")
        order_lifecycle.cancel_order(order)
        assert order.order_status == "cancelled"

    def test_status_cancelled_routes_to_cancel(self, make_order, make_product, session):
        p = make_product(stock=4)
        order = make_order([LineRequest(p.id, 4)])
        order_lifecycle.update_status(order, "cancelled", note="Out of region")
        session.refresh(p)
        assert p.stock == 4
        assert order.cancelled_reason == "Out of region"

    def test_cannot_cancel_shipped(self, make_order, make_product, session):
        p = make_product(stock=5)
        order = make_order([LineRequest(p.id, 1)])
        for status in ("confirmed", "processing", "shipped"):
            order_lifecycle.update_status(order, status)
        history_before = len(order.status_history)

        with pytest.raises(InvalidTransition):
            order_lifecycle.cancel_order(order, "too late")

        assert len(order.status_history) == history_before
        assert order.order_status == "shipped"
        session.refresh(p)
        assert p.stock == 4


class TestPayment:

    def test_confirm_payment_confirms_pending_order(self, make_order, make_product):
        order = make_order([LineRequest(make_product(price="100").id, 2)])
        order_lifecycle.confirm_payment(order, "pi_123", Decimal("216.00"))
        assert order.payment_status == "paid"
        assert order.transaction_id == "pi_123"
        assert order.amount_paid == Decimal("216.00")
        assert order.order_status == "confirmed"
        assert order.status_history[-1].note == "Payment received"

    def test_confirm_payment_is_idempotent(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        order_lifecycle.confirm_payment(order, "pi_1")
        entries = len(order.status_history)
        order_lifecycle.confirm_payment(order, "pi_1")
        assert len(order.status_history) == entries

    def test_fail_payment_only_when_pending(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        order_lifecycle.fail_payment(order, "card declined")
        assert order.payment_status == "failed"
        with pytest.raises(InvalidTransition):
            order_lifecycle.fail_payment(order)

    def test_partial_then_full_refund(self, make_order, make_product):
        order = make_order([LineRequest(make_product(price="100").id, 1)])
        order_lifecycle.confirm_payment(order, "pi_9")
        paid = order.amount_paid

        order_lifecycle.refund_payment(order, Decimal("50"))
        assert order.payment_status == "partially_refunded"
        assert order.order_status == "confirmed"

        order_lifecycle.refund_payment(order)
        assert order.payment_status == "refunded"
        assert order.amount_refunded == paid
        assert order.order_status == "refunded"
        assert order.status_history[-1].status == "refunded"

    def test_refund_requires_payment(self, make_order, make_product):
        order = make_order([LineRequest(make_product().id, 1)])
        with pytest.raises(InvalidTransition):
            order_lifecycle.refund_payment(order)

    def test_refund_cannot_exceed_paid(self, make_order, make_product):
        order = make_order([LineRequest(make_product(price="10").id, 1)])
        order_lifecycle.confirm_payment(order, "pi_2")
        with pytest.raises(ValidationFailed):
            order_lifecycle.refund_payment(order, Decimal("1000"))
