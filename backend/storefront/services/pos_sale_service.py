# Overview: Service-layer operations for point-of-sale sales; completion with stock decrement and voids.

"""
POS Sale Service

LIFECYCLE:
    COMPLETED -> VOIDED (terminal, restores stock)

A sale exists only once its stock decrement succeeded: the sale row, its
line snapshots, the sale number and the decrement commit together. A void
flips the status and restores stock together; the locked, version-checked
status update guarantees stock is restored at most once.
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..extensions import db
from ..errors import AlreadyVoided, EmptySale, InvalidTransition, NotFoundError, ValidationError
from ..models import PAYMENT_TYPES, SALE_COMPLETED, SALE_VOIDED, PosSale, PosSaleItem
from ..time_utils import utcnow
from ..validation import coerce_int, date_range, optional_text, require_id
from . import notification_service
from .catalog_service import snapshot_transaction_lines
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import StockLine, decrement_locked, restore_locked
from .pagination import paginate

logger = logging.getLogger(__name__)

SALE_STATUSES = (SALE_COMPLETED, SALE_VOIDED)


def _validate_payment_type(payment_type: str | None) -> str:
    value = (payment_type or "CASH").strip().upper()
    if value not in PAYMENT_TYPES:
        raise ValidationError(f"payment_type must be one of {', '.join(PAYMENT_TYPES)}")
    return value


def _publish(sale: PosSale, from_status: str | None, event_type: str, actor_id: int | None) -> None:
    notification_service.publish(notification_service.TransitionEvent(
        event_type=event_type,
        document_type="POS_SALE",
        document_id=sale.id,
        document_number=sale.sale_number,
        from_status=from_status,
        to_status=sale.status,
        actor_id=actor_id,
        payload={"payment_type": sale.payment_type, "total_cents": sale.total_cents},
    ))


def create_sale(
    lines: Iterable[dict],
    staff_id: int,
    payment_type: str = "CASH",
    notes: str | None = None,
) -> PosSale:
    """
    Record a completed counter sale and decrement stock.

    Raises:
        EmptySale: no lines
        ValidationError: bad line, payment type, or variant not for sale
        InsufficientStock: nothing is written
    """
    lines = list(lines or [])
    if not lines:
        raise EmptySale()
    staff_id = require_id(staff_id, "staff_id")
    payment_type = _validate_payment_type(payment_type)
    notes = optional_text(notes, "notes", max_length=500)

    def _unit():
        begin_write()
        snapshots = snapshot_transaction_lines(lines)
        now = utcnow()
        subtotal = sum(s.line_total_cents for s in snapshots)

        sale = PosSale(
            sale_number=next_document_number(
                document_type="POS_SALE", prefix="POS", period=now.strftime("%Y%m%d"), pad=4
            ),
            status=SALE_COMPLETED,
            staff_id=staff_id,
            payment_type=payment_type,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            notes=notes,
            completed_at=now,
        )
        for snap in snapshots:
            sale.items.append(PosSaleItem(
                variant_id=snap.variant_id,
                product_name=snap.product_name,
                variant_name=snap.variant_name,
                product_sku=snap.product_sku,
                image_url=snap.image_url,
                quantity=snap.quantity,
                unit_price_cents=snap.unit_price_cents,
                line_total_cents=snap.line_total_cents,
            ))
        db.session.add(sale)
        db.session.flush()

        decrement_locked(
            [StockLine(s.variant_id, s.quantity) for s in snapshots],
            reason="SALE",
            reference=sale.sale_number,
        )
        db.session.commit()
        return sale

    sale = run_with_retry(_unit)
    logger.info("Completed sale %s (%s, %d cents)", sale.sale_number, payment_type, sale.total_cents)
    _publish(sale, None, notification_service.SALE_COMPLETED, staff_id)
    return sale


def void_sale(sale_id: int, reason: str | None = None, staff_id: int | None = None) -> PosSale:
    """
    Void a completed sale and restore its stock.

    Raises:
        AlreadyVoided: the sale was voided before; stock is untouched
    """
    sale_id = require_id(sale_id, "sale_id")
    reason = optional_text(reason, "reason", max_length=255)
    if staff_id is not None:
        staff_id = require_id(staff_id, "staff_id")

    def _unit():
        begin_write()
        sale = lock_for_update(db.session.query(PosSale).filter(PosSale.id == sale_id)).first()
        if sale is None:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})
        if sale.status == SALE_VOIDED:
            raise AlreadyVoided(sale.id)
        if sale.status != SALE_COMPLETED:
            raise InvalidTransition(sale.status, SALE_VOIDED)

        sale.status = SALE_VOIDED
        sale.voided_at = utcnow()
        sale.voided_by_staff_id = staff_id
        sale.void_reason = reason
        db.session.flush()

        restore_locked(
            [StockLine(item.variant_id, item.quantity) for item in sale.items],
            reason="SALE_VOID",
            reference=sale.sale_number,
        )
        db.session.commit()
        return sale

    sale = run_with_retry(_unit)
    logger.info("Voided sale %s", sale.sale_number)
    _publish(sale, SALE_COMPLETED, notification_service.SALE_VOIDED, staff_id)
    return sale


def get_sale(sale_ref) -> PosSale:
    """Look a sale up by numeric id or by sale number (POS-YYYYMMDD-NNNN)."""
    if isinstance(sale_ref, str) and not sale_ref.strip().isdigit():
        sale = db.session.query(PosSale).filter(PosSale.sale_number == sale_ref.strip()).first()
    else:
        sale = db.session.get(PosSale, coerce_int(sale_ref, "sale_id"))
    if sale is None:
        raise NotFoundError("Sale not found", details={"sale": sale_ref})
    return sale


def list_sales(
    status: str | None = None,
    payment_type: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    start=None,
    end=None,
) -> dict:
    """Sales newest first; start/end bound created_at inclusively."""
    start, end = date_range(start, end)
    query = db.session.query(PosSale)
    if status:
        status = status.strip().upper()
        if status not in SALE_STATUSES:
            raise ValidationError(f"status must be one of {', '.join(SALE_STATUSES)}")
        query = query.filter(PosSale.status == status)
    if payment_type:
        query = query.filter(PosSale.payment_type == _validate_payment_type(payment_type))
    if start is not None:
        query = query.filter(PosSale.created_at >= start)
    if end is not None:
        query = query.filter(PosSale.created_at <= end)
    query = query.order_by(PosSale.created_at.desc(), PosSale.id.desc())
    return paginate(query, page, per_page, lambda s: s.to_dict(include_items=False))
