# Overview: Service-layer operations for orders; creation with stock decrement, checkout, transitions and cancellation.

"""
Order Service

LIFECYCLE:
    PENDING -> PROCESSING -> SHIPPED -> DELIVERED
    PENDING | PROCESSING -> CANCELLED (restores stock)

DELIVERED and CANCELLED are terminal. Cancelling after shipment is an
InvalidTransition; cancelling twice is AlreadyCancelled.

ATOMICITY:
- create_order persists the order, its line snapshots, the document number
  and the stock decrement in one transaction.
- cancel_order flips the status and restores stock in one transaction. The
  row is locked and its version checked, so a second cancel can never issue a
  second restore.

Notifications are published only after commit.
"""

from __future__ import annotations

import logging
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..errors import (
    AlreadyCancelled,
    EmptyCart,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from ..models import (
    DELIVERY_HOME,
    DELIVERY_PICKUP,
    DELIVERY_TYPES,
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    Order,
    OrderItem,
)
from ..money import check_cents
from ..time_utils import utcnow
from ..validation import date_range, optional_text, require_id
from . import notification_service
from .cart_service import OwnerHint, clear_cart_locked, resolve_locked
from .catalog_service import snapshot_transaction_lines
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import StockLine, decrement_locked, restore_locked
from .pagination import paginate

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ORDER_PENDING: {ORDER_PROCESSING, ORDER_CANCELLED},
    ORDER_PROCESSING: {ORDER_SHIPPED, ORDER_CANCELLED},
    ORDER_SHIPPED: {ORDER_DELIVERED},
    ORDER_DELIVERED: set(),
    ORDER_CANCELLED: set(),
}


def _event_type_for(status: str) -> str:
    if status == ORDER_CANCELLED:
        return notification_service.ORDER_CANCELLED
    return notification_service.ORDER_STATUS_CHANGED


def _publish(order: Order, from_status: str | None, event_type: str, actor_id: int | None = None) -> None:
    notification_service.publish(notification_service.TransitionEvent(
        event_type=event_type,
        document_type="ORDER",
        document_id=order.id,
        document_number=order.order_number,
        from_status=from_status,
        to_status=order.status,
        actor_id=actor_id,
        payload={"customer_id": order.customer_id, "total_cents": order.total_cents},
    ))


def _validate_delivery_type(delivery_type: str | None) -> str:
    value = (delivery_type or DELIVERY_PICKUP).strip().upper()
    if value not in DELIVERY_TYPES:
        raise ValidationError(f"delivery_type must be one of {', '.join(DELIVERY_TYPES)}")
    return value


def _delivery_fee_cents(delivery_type: str) -> int:
    if delivery_type != DELIVERY_HOME:
        return 0
    return check_cents(current_app.config.get("DELIVERY_FEE_CENTS", 0), "DELIVERY_FEE_CENTS")


def _create_order_locked(
    snapshots,
    customer_id: int,
    notes: str | None,
    delivery_type: str = DELIVERY_PICKUP,
    discount_cents: int = 0,
) -> Order:
    """Persist the order and decrement stock. Caller owns the transaction."""
    now = utcnow()
    subtotal = sum(s.line_total_cents for s in snapshots)
    delivery_fee = _delivery_fee_cents(delivery_type)
    if discount_cents > subtotal + delivery_fee:
        raise ValidationError(
            "discount_cents cannot exceed the order amount",
            details={"discount_cents": discount_cents, "amount_cents": subtotal + delivery_fee},
        )

    order = Order(
        order_number=next_document_number(
            document_type="ORDER", prefix="ORD", period=now.strftime("%Y"), pad=6
        ),
        status=ORDER_PENDING,
        customer_id=customer_id,
        delivery_type=delivery_type,
        subtotal_cents=subtotal,
        delivery_fee_cents=delivery_fee,
        discount_cents=discount_cents,
        total_cents=subtotal + delivery_fee - discount_cents,
        notes=notes,
    )
    for snap in snapshots:
        order.items.append(OrderItem(
            variant_id=snap.variant_id,
            product_name=snap.product_name,
            variant_name=snap.variant_name,
            product_sku=snap.product_sku,
            quantity=snap.quantity,
            unit_price_cents=snap.unit_price_cents,
            line_total_cents=snap.line_total_cents,
        ))
    db.session.add(order)
    db.session.flush()

    decrement_locked(
        [StockLine(s.variant_id, s.quantity) for s in snapshots],
        reason="ORDER",
        reference=order.order_number,
    )
    return order


def create_order(
    lines: Iterable[dict],
    customer_id: int,
    notes: str | None = None,
    *,
    delivery_type: str = DELIVERY_PICKUP,
    discount_cents: int = 0,
) -> Order:
    """
    Create a PENDING order and decrement stock for its lines.

    Lines are dicts with variant_id, quantity and unit_price_cents (or a
    decimal unit_price). The subtotal uses the submitted unit prices;
    HOME_DELIVERY adds the configured DELIVERY_FEE_CENTS and the discount is
    taken off the result.

    Raises:
        EmptyCart: no lines
        ValidationError: bad line, or variant not available for sale
        InsufficientStock: nothing is written
    """
    lines = list(lines or [])
    if not lines:
        raise EmptyCart()
    customer_id = require_id(customer_id, "customer_id")
    notes = optional_text(notes, "notes", max_length=500)
    delivery_type = _validate_delivery_type(delivery_type)
    discount_cents = check_cents(discount_cents, "discount_cents")

    def _unit():
        begin_write()
        order = _create_order_locked(
            snapshot_transaction_lines(lines), customer_id, notes, delivery_type, discount_cents
        )
        db.session.commit()
        return order

    order = run_with_retry(_unit)
    logger.info("Created order %s for customer %s", order.order_number, customer_id)
    _publish(order, None, notification_service.ORDER_CREATED, customer_id)
    return order


def checkout_cart(
    owner: OwnerHint,
    notes: str | None = None,
    *,
    delivery_type: str = DELIVERY_PICKUP,
    discount_cents: int = 0,
) -> Order:
    """
    Turn the customer's cart into an order at the captured cart prices and
    empty the cart, in one transaction.
    """
    if owner is None or owner.customer_id is None:
        raise ValidationError("Checkout requires a signed-in customer")
    notes = optional_text(notes, "notes", max_length=500)
    delivery_type = _validate_delivery_type(delivery_type)
    discount_cents = check_cents(discount_cents, "discount_cents")

    def _unit():
        begin_write()
        resolution = resolve_locked(owner)
        cart = resolution.cart
        lines = [
            {
                "variant_id": item.variant_id,
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
            }
            for item in cart.items
        ]
        if not lines:
            raise EmptyCart("Cannot check out an empty cart")
        order = _create_order_locked(
            snapshot_transaction_lines(lines), cart.customer_id, notes, delivery_type, discount_cents
        )
        clear_cart_locked(cart)
        db.session.commit()
        return order

    order = run_with_retry(_unit)
    logger.info("Checked out cart into order %s", order.order_number)
    _publish(order, None, notification_service.ORDER_CREATED, order.customer_id)
    return order


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter(Order.id == order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def cancel_order(order_id: int, customer_id: int | None = None) -> Order:
    """
    Cancel a PENDING or PROCESSING order and restore its stock.

    customer_id, when given, must own the order (a customer cancelling their
    own order); staff cancellations pass None.
    """
    order_id = require_id(order_id, "order_id")
    if customer_id is not None:
        customer_id = require_id(customer_id, "customer_id")

    def _unit():
        begin_write()
        order = _lock_order(order_id)
        if customer_id is not None and order.customer_id != customer_id:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        if order.status == ORDER_CANCELLED:
            raise AlreadyCancelled(order.id)
        if ORDER_CANCELLED not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidTransition(
                order.status, ORDER_CANCELLED,
                f"Cannot cancel an order that is {order.status}",
            )

        previous = order.status
        order.status = ORDER_CANCELLED
        order.cancelled_at = utcnow()
        # Version-checked UPDATE: a concurrent transition fails here, before any restore
        db.session.flush()

        restore_locked(
            [StockLine(item.variant_id, item.quantity) for item in order.items],
            reason="ORDER_CANCEL",
            reference=order.order_number,
        )
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_unit)
    logger.info("Cancelled order %s (was %s)", order.order_number, previous)
    _publish(order, previous, notification_service.ORDER_CANCELLED, customer_id)
    return order


def advance_order(order_id: int, status: str) -> Order:
    """Move an order forward through its lifecycle."""
    order_id = require_id(order_id, "order_id")
    status = (status or "").strip().upper()
    if status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}")
    if status == ORDER_CANCELLED:
        return cancel_order(order_id)

    def _unit():
        begin_write()
        order = _lock_order(order_id)
        if status not in ALLOWED_TRANSITIONS[order.status]:
            raise InvalidTransition(order.status, status)
        previous = order.status
        order.status = status
        if status == ORDER_DELIVERED:
            order.delivered_at = utcnow()
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_unit)
    logger.info("Order %s: %s -> %s", order.order_number, previous, status)
    _publish(order, previous, _event_type_for(status))
    return order


def get_order(order_id: int, customer_id: int | None = None) -> Order:
    order = db.session.get(Order, require_id(order_id, "order_id"))
    if order is None or (customer_id is not None and order.customer_id != customer_id):
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_orders(
    customer_id: int | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    start=None,
    end=None,
) -> dict:
    """
    Orders newest first, optionally filtered by customer, status and an
    inclusive created_at range (datetimes or ISO-8601 strings).
    """
    start, end = date_range(start, end)
    query = db.session.query(Order)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    if status:
        status = status.strip().upper()
        if status not in ORDER_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(ORDER_STATUSES)}")
        query = query.filter(Order.status == status)
    if start is not None:
        query = query.filter(Order.created_at >= start)
    if end is not None:
        query = query.filter(Order.created_at <= end)
    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(query, page, per_page, lambda o: o.to_dict(include_items=False))
