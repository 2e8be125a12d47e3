# Overview: Service-layer operations for inventory; guarded stock decrements, restores and the movement journal.

"""
Inventory ledger.

ProductVariant.stock is mutated only here, and only with guarded in-place
updates:

    UPDATE product_variants SET stock = stock - :qty
    WHERE id = :id AND stock >= :qty

An affected-row count of zero means the line cannot be satisfied; the whole
transaction rolls back and InsufficientStock names the first failing line.
There is never a read-then-write on stock.

The *_locked helpers run inside the caller's transaction and never commit, so
lifecycles persist their document rows and the stock change together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import update

from ..extensions import db
from ..errors import InsufficientStock, NotFoundError, ValidationError
from ..models import MOVEMENT_REASONS, ProductVariant, StockMovement
from ..validation import coerce_int, optional_text, require_id, require_quantity
from .concurrency import begin_write, run_with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockLine:
    variant_id: int
    quantity: int


def normalize_lines(lines: Iterable) -> list[StockLine]:
    """
    Accept StockLine objects, (variant_id, quantity) pairs or dicts, and
    combine quantities per variant in first-seen order.
    """
    combined: dict[int, int] = {}
    for line in lines:
        if isinstance(line, StockLine):
            variant_id, quantity = line.variant_id, line.quantity
        elif isinstance(line, dict):
            variant_id, quantity = line.get("variant_id"), line.get("quantity")
        elif hasattr(line, "variant_id") and hasattr(line, "quantity"):
            variant_id, quantity = line.variant_id, line.quantity
        else:
            variant_id, quantity = line
        variant_id = require_id(variant_id, "variant_id")
        quantity = require_quantity(quantity)
        combined[variant_id] = combined.get(variant_id, 0) + quantity

    if not combined:
        raise ValidationError("At least one stock line is required")
    return [StockLine(variant_id=vid, quantity=qty) for vid, qty in combined.items()]


def _check_reason(reason: str) -> str:
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"reason must be one of {', '.join(MOVEMENT_REASONS)}")
    return reason


def _current_stock(variant_id: int) -> int | None:
    return (
        db.session.query(ProductVariant.stock)
        .filter(ProductVariant.id == variant_id)
        .scalar()
    )


def decrement_locked(
    lines: list[StockLine], *, reason: str, reference: str | None = None, note: str | None = None
) -> None:
    """Guarded decrement of every line. Caller owns the transaction."""
    for line in lines:
        result = db.session.execute(
            update(ProductVariant)
            .where(
                ProductVariant.id == line.variant_id,
                ProductVariant.stock >= line.quantity,
            )
            .values(stock=ProductVariant.stock - line.quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = _current_stock(line.variant_id)
            if available is None:
                raise NotFoundError("Variant not found", details={"variant_id": line.variant_id})
            raise InsufficientStock(line.variant_id, requested=line.quantity, available=available)

        db.session.add(StockMovement(
            variant_id=line.variant_id,
            quantity_delta=-line.quantity,
            reason=reason,
            reference=reference,
            note=note,
        ))


def restore_locked(
    lines: list[StockLine], *, reason: str, reference: str | None = None, note: str | None = None
) -> None:
    """Increment every line. Caller owns the transaction and the state guard."""
    for line in lines:
        result = db.session.execute(
            update(ProductVariant)
            .where(ProductVariant.id == line.variant_id)
            .values(stock=ProductVariant.stock + line.quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("Variant not found", details={"variant_id": line.variant_id})

        db.session.add(StockMovement(
            variant_id=line.variant_id,
            quantity_delta=line.quantity,
            reason=reason,
            reference=reference,
            note=note,
        ))


def reserve_and_decrement(lines: Iterable, *, reason: str = "RESERVE", reference: str | None = None) -> None:
    """
    Atomically decrement stock for every line, or for none of them.

    Raises:
        InsufficientStock: first line whose quantity exceeds available stock
    """
    stock_lines = normalize_lines(lines)
    _check_reason(reason)

    def _unit():
        begin_write()
        decrement_locked(stock_lines, reason=reason, reference=reference)
        db.session.commit()

    run_with_retry(_unit)
    logger.info("Decremented stock for %d variants (%s %s)", len(stock_lines), reason, reference or "-")


def restore_stock(lines: Iterable, *, reason: str = "RESTORE", reference: str | None = None) -> None:
    """
    Atomically increment stock for every line.

    Not idempotent on its own: callers guard single invocation with a
    lifecycle state transition.
    """
    stock_lines = normalize_lines(lines)
    _check_reason(reason)

    def _unit():
        begin_write()
        restore_locked(stock_lines, reason=reason, reference=reference)
        db.session.commit()

    run_with_retry(_unit)
    logger.info("Restored stock for %d variants (%s %s)", len(stock_lines), reason, reference or "-")


def adjust_stock(variant_id: int, delta: int, note: str | None = None) -> int:
    """Manual receive (delta > 0) or write-off (delta < 0). Returns the new stock level."""
    variant_id = require_id(variant_id, "variant_id")
    delta = coerce_int(delta, "delta")
    if delta == 0:
        raise ValidationError("delta cannot be zero")
    note = optional_text(note, "note", max_length=255)

    def _unit():
        begin_write()
        if delta < 0:
            decrement_locked([StockLine(variant_id, -delta)], reason="ADJUST", note=note)
        else:
            restore_locked([StockLine(variant_id, delta)], reason="ADJUST", note=note)
        db.session.commit()
        return _current_stock(variant_id)

    return run_with_retry(_unit)


def get_stock(variant_id: int) -> int:
    stock = _current_stock(require_id(variant_id, "variant_id"))
    if stock is None:
        raise NotFoundError("Variant not found")
    return stock


def list_movements(variant_id: int, limit: int | None = None) -> list[StockMovement]:
    """Movement journal for a variant, newest first."""
    query = (
        db.session.query(StockMovement)
        .filter(StockMovement.variant_id == require_id(variant_id, "variant_id"))
        .order_by(StockMovement.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()
