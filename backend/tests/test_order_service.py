"""
Order lifecycle tests: snapshots, transitions, cancellation and checkout.
"""

import re
from datetime import datetime

import pytest

from conftest import line
from storefront.errors import (
    AlreadyCancelled,
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from storefront.models import Order, StockMovement
from storefront.services import cart_service, catalog_service, inventory_service, notification_service, order_service
from storefront.services.cart_service import OwnerHint


def test_create_order_snapshots_lines_and_decrements(db_session, catalog):
    order = order_service.create_order(
        [line(catalog.red_m, 2), line(catalog.blue_s, 1, 2500)],
        customer_id=7,
        notes="Gift wrap",
    )

    assert re.fullmatch(r"ORD-\d{4}-000001", order.order_number)
    assert order.status == "PENDING"
    assert order.subtotal_cents == order.total_cents == 2 * 2000 + 2500
    assert [item.variant_name for item in order.items] == ["Red - M", "Blue - S"]
    assert inventory_service.get_stock(catalog.red_m) == 8
    assert inventory_service.get_stock(catalog.blue_s) == 4

    refs = {m.reference for m in db_session.query(StockMovement).all()}
    assert refs == {order.order_number}


def test_subtotal_uses_submitted_prices(db_session, catalog):
    order = order_service.create_order(
        [{"variant_id": catalog.red_m, "quantity": 2, "unit_price": "19.99"}],
        customer_id=7,
    )

    assert order.subtotal_cents == 3998


def test_line_snapshots_survive_catalog_edits(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)

    catalog_service.update_product(catalog.product_id, {"name": "Renamed Tee", "base_price_cents": 9999})

    item = order_service.get_order(order.id).items[0]
    assert item.product_name == "Classic Tee"
    assert item.unit_price_cents == 2000
    assert item.line_total_cents == 2000


def test_empty_order_rejected(db_session, catalog):
    with pytest.raises(EmptyCart):
        order_service.create_order([], customer_id=7)


def test_unavailable_variant_rejected(db_session, catalog):
    catalog_service.delete_product(catalog.product_id)

    with pytest.raises(ValidationError):
        order_service.create_order([line(catalog.red_m, 1)], customer_id=7)


def test_insufficient_stock_writes_nothing(db_session, catalog):
    with pytest.raises(InsufficientStock):
        order_service.create_order([line(catalog.red_m, 1), line(catalog.blue_s, 6, 2500)], customer_id=7)

    assert db_session.query(Order).count() == 0
    assert inventory_service.get_stock(catalog.red_m) == 10

    # The number allocated inside the failed transaction is not consumed
    order = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)
    assert order.order_number.endswith("-000001")


def test_order_numbers_are_sequential(db_session, catalog):
    numbers = [
        order_service.create_order([line(catalog.red_m, 1)], customer_id=7).order_number
        for _ in range(3)
    ]

    assert [n[-6:] for n in numbers] == ["000001", "000002", "000003"]


def test_forward_transitions(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)

    for status in ("PROCESSING", "SHIPPED", "DELIVERED"):
        order = order_service.advance_order(order.id, status)
        assert order.status == status

    assert order.delivered_at is not None

    with pytest.raises(InvalidTransition):
        order_service.advance_order(order.id, "PROCESSING")
    assert order_service.get_order(order.id).status == "DELIVERED"


def test_skipping_a_state_is_rejected(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)

    with pytest.raises(InvalidTransition) as exc:
        order_service.advance_order(order.id, "SHIPPED")

    assert exc.value.details == {"current_status": "PENDING", "target_status": "SHIPPED"}
    assert order_service.get_order(order.id).status == "PENDING"


def test_unknown_status_rejected(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)

    with pytest.raises(ValidationError):
        order_service.advance_order(order.id, "LOST")


def test_cancel_restores_stock_exactly_once(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 3)], customer_id=7)
    order_service.advance_order(order.id, "PROCESSING")
    assert inventory_service.get_stock(catalog.red_m) == 7

    cancelled = order_service.cancel_order(order.id)
    assert cancelled.status == "CANCELLED"
    assert cancelled.cancelled_at is not None
    assert inventory_service.get_stock(catalog.red_m) == 10

    with pytest.raises(AlreadyCancelled):
        order_service.cancel_order(order.id)
    with pytest.raises(InvalidTransition):
        order_service.advance_order(order.id, "PROCESSING")
    assert inventory_service.get_stock(catalog.red_m) == 10


def test_advance_to_cancelled_routes_through_cancel(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 2)], customer_id=7)

    order_service.advance_order(order.id, "CANCELLED")

    assert inventory_service.get_stock(catalog.red_m) == 10


def test_cancel_after_shipment_rejected(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 2)], customer_id=7)
    order_service.advance_order(order.id, "PROCESSING")
    order_service.advance_order(order.id, "SHIPPED")

    with pytest.raises(InvalidTransition):
        order_service.cancel_order(order.id)

    assert order_service.get_order(order.id).status == "SHIPPED"
    assert inventory_service.get_stock(catalog.red_m) == 8


def test_customer_can_only_cancel_own_order(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)

    with pytest.raises(NotFoundError):
        order_service.cancel_order(order.id, customer_id=8)

    assert order_service.cancel_order(order.id, customer_id=7).status == "CANCELLED"


def test_checkout_cart(db_session, catalog):
    owner = OwnerHint(customer_id=7)
    cart_service.add_item(owner, catalog.red_m, 2)
    cart_service.add_item(owner, catalog.blue_s, 1)

    order = order_service.checkout_cart(owner, notes="Leave at door")

    assert order.customer_id == 7
    assert order.subtotal_cents == 2 * 2000 + 2500
    assert order.notes == "Leave at door"
    assert cart_service.get_cart(owner).item_count == 0
    assert inventory_service.get_stock(catalog.red_m) == 8


def test_checkout_keeps_captured_cart_price(db_session, catalog):
    owner = OwnerHint(customer_id=7)
    cart_service.add_item(owner, catalog.red_m, 1)
    catalog_service.update_product(catalog.product_id, {"base_price_cents": 3000})

    order = order_service.checkout_cart(owner)

    assert order.items[0].unit_price_cents == 2000


def test_checkout_requires_customer_and_items(db_session, catalog):
    with pytest.raises(ValidationError):
        order_service.checkout_cart(OwnerHint(session_token="anon"))
    with pytest.raises(EmptyCart):
        order_service.checkout_cart(OwnerHint(customer_id=7))


def test_failed_checkout_keeps_cart(db_session, catalog):
    owner = OwnerHint(customer_id=7)
    cart_service.add_item(owner, catalog.blue_s, 5)
    inventory_service.adjust_stock(catalog.blue_s, -1)

    with pytest.raises(InsufficientStock):
        order_service.checkout_cart(owner)

    assert cart_service.get_cart(owner).item_count == 5
    assert db_session.query(Order).count() == 0


def test_list_orders_filters_and_paginates(db_session, catalog):
    first = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)
    order_service.create_order([line(catalog.red_m, 1)], customer_id=7)
    order_service.create_order([line(catalog.red_m, 1)], customer_id=8)
    order_service.cancel_order(first.id)

    mine = order_service.list_orders(customer_id=7)
    assert mine["count"] == 2

    cancelled = order_service.list_orders(status="cancelled")
    assert [o["id"] for o in cancelled["items"]] == [first.id]

    page = order_service.list_orders(page=1, per_page=2)
    assert page["count"] == 2
    assert page["pagination"]["total"] == 3
    assert page["pagination"]["has_next"] is True


def test_transitions_are_published_after_commit(db_session, catalog):
    events = []
    notification_service.subscribe("*", events.append)

    order = order_service.create_order([line(catalog.red_m, 1)], customer_id=7)
    order_service.advance_order(order.id, "PROCESSING")
    order_service.cancel_order(order.id)

    assert [(e.event_type, e.from_status, e.to_status) for e in events] == [
        ("order.created", None, "PENDING"),
        ("order.status_changed", "PENDING", "PROCESSING"),
        ("order.cancelled", "PROCESSING", "CANCELLED"),
    ]
    assert all(e.document_number == order.order_number for e in events)


def test_failing_subscriber_does_not_undo_cancel(db_session, catalog):
    def broken(event):
        raise RuntimeError("mail server down")

    notification_service.subscribe("order.cancelled", broken)
    order = order_service.create_order([line(catalog.red_m, 2)], customer_id=7)

    order_service.cancel_order(order.id)

    assert order_service.get_order(order.id).status == "CANCELLED"
    assert inventory_service.get_stock(catalog.red_m) == 10


def test_store_pickup_has_no_delivery_fee(db_session, catalog):
    order = order_service.create_order([line(catalog.red_m, 2)], customer_id=7)

    assert order.delivery_type == "STORE_PICKUP"
    assert order.delivery_fee_cents == 0
    assert order.discount_cents == 0
    assert order.total_cents == order.subtotal_cents == 4000


def test_home_delivery_adds_configured_fee(app, db_session, catalog, monkeypatch):
    monkeypatch.setitem(app.config, "DELIVERY_FEE_CENTS", 800)

    order = order_service.create_order(
        [line(catalog.red_m, 2)],
        customer_id=7,
        delivery_type="home_delivery",
        discount_cents=300,
    )

    assert order.delivery_type == "HOME_DELIVERY"
    assert order.subtotal_cents == 4000
    assert order.delivery_fee_cents == 800
    assert order.discount_cents == 300
    assert order.total_cents == 4000 + 800 - 300
    assert order.to_dict(include_items=False)["total_cents"] == 4500


def test_checkout_with_home_delivery(app, db_session, catalog, monkeypatch):
    monkeypatch.setitem(app.config, "DELIVERY_FEE_CENTS", 1200)
    owner = OwnerHint(customer_id=7)
    cart_service.add_item(owner, catalog.blue_s, 1)

    order = order_service.checkout_cart(owner, delivery_type="HOME_DELIVERY")

    assert order.delivery_fee_cents == 1200
    assert order.total_cents == 2500 + 1200


def test_bad_delivery_terms_write_nothing(db_session, catalog):
    with pytest.raises(ValidationError):
        order_service.create_order([line(catalog.red_m, 1)], customer_id=7, delivery_type="DRONE")
    with pytest.raises(ValidationError):
        order_service.create_order([line(catalog.red_m, 1)], customer_id=7, discount_cents=2001)

    assert db_session.query(Order).count() == 0
    assert inventory_service.get_stock(catalog.red_m) == 10


def test_list_orders_by_date_range(db_session, catalog):
    orders = [order_service.create_order([line(catalog.red_m, 1)], customer_id=7) for _ in range(3)]
    for order, day in zip(orders, (1, 15, 28)):
        db_session.get(Order, order.id).created_at = datetime(2026, 2, day, 12, 0)
    db_session.commit()

    mid_month = order_service.list_orders(start="2026-02-10T00:00:00Z", end="2026-02-20T00:00:00Z")
    assert [o["id"] for o in mid_month["items"]] == [orders[1].id]

    # Bounds are inclusive and offsets are normalized to UTC
    assert order_service.list_orders(start="2026-02-15T17:00:00+05:00")["count"] == 2
    assert order_service.list_orders(end=datetime(2026, 2, 15, 12, 0))["count"] == 2
    assert order_service.list_orders(customer_id=8, start="2026-02-01T00:00:00Z")["count"] == 0


def test_list_orders_rejects_bad_range(db_session, catalog):
    with pytest.raises(ValidationError):
        order_service.list_orders(start="2026-03-01T00:00:00Z", end="2026-02-01T00:00:00Z")
    with pytest.raises(ValidationError):
        order_service.list_orders(start="last week")
