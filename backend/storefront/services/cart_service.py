# Overview: Service-layer operations for carts; owner resolution, token issuance, merge-on-login and line edits.

"""
Cart Service

OWNER RESOLUTION:
- A caller presents an OwnerHint: an anonymous session token, a customer id,
  or both (right after login).
- customer_id present: the customer's cart is found or created. A non-empty
  anonymous cart behind the supplied token is merged into it, then the
  anonymous cart is deleted, so repeating the call is a no-op.
- token only: the anonymous cart behind the token. A missing, unknown or
  expired token gets a freshly issued token and a new cart.

TOKEN PROPAGATION:
- Every CartSnapshot carries the session token of the cart it describes. The
  transport layer must hand it back to the client; a token that is issued but
  never returned strands the cart.

Each public mutation is one unit of work: resolution, the edit, and the
expiry refresh commit together. A failed edit rolls back a cart that was
created for it.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    CartOwnershipConflict,
    InsufficientStock,
    NotFoundError,
    ValidationError,
)
from ..models import Cart, CartItem, ProductVariant
from ..time_utils import to_utc_z, utcnow
from ..validation import optional_text, require_id, require_quantity
from .catalog_service import STOREFRONT, get_variant_view
from .concurrency import begin_write, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


@dataclass(frozen=True)
class OwnerHint:
    session_token: str | None = None
    customer_id: int | None = None


@dataclass
class CartResolution:
    cart: Cart
    session_token: str | None
    token_issued: bool = False
    merged: bool = False


@dataclass(frozen=True)
class CartLine:
    item_id: int
    variant_id: int
    product_name: str
    variant_name: str
    image_url: str | None
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.item_id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "image_url": self.image_url,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


@dataclass(frozen=True)
class CartSnapshot:
    cart_id: int
    customer_id: int | None
    session_token: str | None
    items: tuple[CartLine, ...]
    item_count: int
    subtotal_cents: int
    expires_at: datetime | None = None
    token_issued: bool = False
    merged: bool = False

    def to_dict(self) -> dict:
        return {
            "cart_id": self.cart_id,
            "customer_id": self.customer_id,
            "session_token": self.session_token,
            "items": [line.to_dict() for line in self.items],
            "item_count": self.item_count,
            "subtotal_cents": self.subtotal_cents,
            "expires_at": to_utc_z(self.expires_at),
            "token_issued": self.token_issued,
            "merged": self.merged,
        }


def _normalize_owner(owner) -> OwnerHint:
    if owner is None:
        return OwnerHint()
    if not isinstance(owner, OwnerHint):
        raise ValidationError("owner must be an OwnerHint")
    customer_id = None
    if owner.customer_id is not None:
        customer_id = require_id(owner.customer_id, "customer_id")
    token = optional_text(owner.session_token, "session_token", max_length=128)
    return OwnerHint(session_token=token, customer_id=customer_id)


def _ttl() -> timedelta:
    return timedelta(days=current_app.config.get("CART_TTL_DAYS", 7))


def _touch(cart: Cart, now: datetime) -> None:
    """Slide the expiry of an anonymous cart forward on every mutation."""
    if cart.is_anonymous:
        cart.expires_at = now + _ttl()


def _variant_stock(variant_ids) -> dict[int, int]:
    ids = set(variant_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(ProductVariant.id, ProductVariant.stock)
        .filter(ProductVariant.id.in_(ids))
        .all()
    )
    return {r.id: r.stock for r in rows}


def _merge_into(source: Cart, target: Cart) -> None:
    """
    Fold the anonymous cart's lines into the customer cart.

    Shared variants add quantities, clamped to current stock; a line clamped
    to nothing is dropped. Lines unique to either cart carry over unchanged.
    """
    existing = {item.variant_id: item for item in target.items}
    stock = _variant_stock(item.variant_id for item in source.items)

    for item in list(source.items):
        current = existing.get(item.variant_id)
        if current is None:
            target.items.append(CartItem(
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                product_name=item.product_name,
                variant_name=item.variant_name,
                image_url=item.image_url,
            ))
            continue

        merged_qty = min(current.quantity + item.quantity, stock.get(item.variant_id, 0))
        if merged_qty > 0:
            current.quantity = merged_qty
        else:
            target.items.remove(current)


def _issue_anonymous_cart(now: datetime) -> CartResolution:
    token = secrets.token_urlsafe(TOKEN_BYTES)
    cart = Cart(session_token=token, expires_at=now + _ttl())
    db.session.add(cart)
    db.session.flush()
    logger.info("Issued anonymous cart %s", cart.id)
    return CartResolution(cart=cart, session_token=token, token_issued=True)


def resolve_locked(owner: OwnerHint, now: datetime | None = None) -> CartResolution:
    """
    Resolve (and if needed create or merge) the owner's cart.

    Runs inside the caller's transaction and never commits.
    """
    owner = _normalize_owner(owner)
    now = now or utcnow()

    if owner.customer_id is not None:
        customer_cart = db.session.query(Cart).filter(Cart.customer_id == owner.customer_id)
        cart = lock_for_update(customer_cart).first()
        if cart is None:
            try:
                with db.session.begin_nested():
                    cart = Cart(customer_id=owner.customer_id)
                    db.session.add(cart)
            except IntegrityError:
                # A concurrent first request created it; use theirs
                cart = lock_for_update(customer_cart).one()

        merged = False
        if owner.session_token:
            anonymous = (
                db.session.query(Cart)
                .filter(Cart.session_token == owner.session_token)
                .first()
            )
            if anonymous is not None:
                live = anonymous.expires_at is None or anonymous.expires_at > now
                if live and anonymous.items:
                    _merge_into(anonymous, cart)
                    merged = True
                    logger.info(
                        "Merged anonymous cart %s into customer cart %s", anonymous.id, cart.id
                    )
                db.session.delete(anonymous)
                db.session.flush()
        return CartResolution(cart=cart, session_token=None, merged=merged)

    if owner.session_token:
        cart = (
            db.session.query(Cart)
            .filter(Cart.session_token == owner.session_token)
            .first()
        )
        if cart is not None:
            if cart.expires_at is not None and cart.expires_at <= now:
                db.session.delete(cart)
                db.session.flush()
            else:
                return CartResolution(cart=cart, session_token=owner.session_token)

    return _issue_anonymous_cart(now)


def resolve_cart(owner: OwnerHint) -> CartResolution:
    """Resolve the owner's cart in its own transaction."""
    def _unit():
        begin_write()
        resolution = resolve_locked(owner)
        db.session.commit()
        return resolution

    return run_with_retry(_unit)


def build_snapshot(resolution: CartResolution) -> CartSnapshot:
    cart = resolution.cart
    items = (
        db.session.query(CartItem)
        .filter(CartItem.cart_id == cart.id)
        .order_by(CartItem.id.asc())
        .all()
    )
    lines = tuple(
        CartLine(
            item_id=item.id,
            variant_id=item.variant_id,
            product_name=item.product_name,
            variant_name=item.variant_name,
            image_url=item.image_url,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
        )
        for item in items
    )
    return CartSnapshot(
        cart_id=cart.id,
        customer_id=cart.customer_id,
        session_token=cart.session_token,
        items=lines,
        item_count=sum(line.quantity for line in lines),
        subtotal_cents=sum(line.line_total_cents for line in lines),
        expires_at=cart.expires_at,
        token_issued=resolution.token_issued,
        merged=resolution.merged,
    )


def _mutate(owner: OwnerHint, edit) -> CartSnapshot:
    """Resolve, apply edit(cart, now), refresh expiry and commit as one unit."""
    def _unit():
        begin_write()
        now = utcnow()
        resolution = resolve_locked(owner, now)
        edit(resolution.cart, now)
        _touch(resolution.cart, now)
        db.session.commit()
        return resolution

    return build_snapshot(run_with_retry(_unit))


def _owned_item(cart: Cart, item_id: int) -> CartItem:
    item = db.session.get(CartItem, item_id)
    if item is None:
        raise NotFoundError("Cart item not found", details={"item_id": item_id})
    if item.cart_id != cart.id:
        raise CartOwnershipConflict(
            "Cart item belongs to a different cart", details={"item_id": item_id}
        )
    return item


def get_cart(owner: OwnerHint) -> CartSnapshot:
    return build_snapshot(resolve_cart(owner))


def merge_carts(session_token: str, customer_id: int) -> CartSnapshot:
    """Merge-on-login. Safe to call repeatedly."""
    return get_cart(OwnerHint(session_token=session_token, customer_id=customer_id))


def add_item(owner: OwnerHint, variant_id: int, quantity: int) -> CartSnapshot:
    """
    Add quantity of a variant to the cart.

    An existing line is incremented in place with a guarded update, so two
    concurrent adds never lose a quantity and the line never exceeds stock.

    Raises:
        NotFoundError: variant not visible on the storefront
        InsufficientStock: resulting line quantity exceeds stock
    """
    variant_id = require_id(variant_id, "variant_id")
    quantity = require_quantity(quantity)

    def _edit(cart: Cart, now: datetime) -> None:
        view = get_variant_view(variant_id, STOREFRONT)
        if view is None:
            raise NotFoundError("Variant not available", details={"variant_id": variant_id})

        stock_subquery = (
            select(ProductVariant.stock)
            .where(ProductVariant.id == variant_id)
            .scalar_subquery()
        )
        increment = (
            update(CartItem)
            .where(
                CartItem.cart_id == cart.id,
                CartItem.variant_id == variant_id,
                CartItem.quantity + quantity <= stock_subquery,
            )
            .values(quantity=CartItem.quantity + quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        if db.session.execute(increment).rowcount == 1:
            return

        existing = (
            db.session.query(CartItem.quantity)
            .filter(CartItem.cart_id == cart.id, CartItem.variant_id == variant_id)
            .scalar()
        )
        if existing is not None:
            raise InsufficientStock(variant_id, requested=existing + quantity, available=view.stock)
        if quantity > view.stock:
            raise InsufficientStock(variant_id, requested=quantity, available=view.stock)

        try:
            with db.session.begin_nested():
                db.session.add(CartItem(
                    cart_id=cart.id,
                    variant_id=variant_id,
                    quantity=quantity,
                    unit_price_cents=view.unit_price_cents,
                    product_name=view.product_name,
                    variant_name=view.variant_name,
                    image_url=view.image_url,
                ))
        except IntegrityError:
            # Line appeared concurrently; fall back to the guarded increment
            if db.session.execute(increment).rowcount != 1:
                raise InsufficientStock(variant_id, requested=quantity, available=view.stock)

    return _mutate(owner, _edit)


def update_item(owner: OwnerHint, item_id: int, quantity: int) -> CartSnapshot:
    """Set a line's quantity; 0 removes the line."""
    item_id = require_id(item_id, "item_id")
    quantity = require_quantity(quantity, allow_zero=True)

    def _edit(cart: Cart, now: datetime) -> None:
        item = _owned_item(cart, item_id)
        if quantity == 0:
            db.session.delete(item)
            return
        available = _variant_stock([item.variant_id]).get(item.variant_id, 0)
        if quantity > available:
            raise InsufficientStock(item.variant_id, requested=quantity, available=available)
        item.quantity = quantity

    return _mutate(owner, _edit)


def remove_item(owner: OwnerHint, item_id: int) -> CartSnapshot:
    item_id = require_id(item_id, "item_id")

    def _edit(cart: Cart, now: datetime) -> None:
        db.session.delete(_owned_item(cart, item_id))

    return _mutate(owner, _edit)


def clear_cart_locked(cart: Cart) -> int:
    """Delete every line of a cart inside the caller's transaction."""
    return (
        db.session.query(CartItem)
        .filter(CartItem.cart_id == cart.id)
        .delete(synchronize_session=False)
    )


def clear_cart(owner: OwnerHint) -> CartSnapshot:
    return _mutate(owner, lambda cart, now: clear_cart_locked(cart))


def purge_expired_carts(now: datetime | None = None) -> int:
    """Delete anonymous carts whose expiry has passed. Returns the number removed."""
    now = now or utcnow()

    def _unit():
        begin_write()
        expired_ids = select(Cart.id).where(
            Cart.customer_id.is_(None),
            Cart.expires_at.is_not(None),
            Cart.expires_at <= now,
        )
        db.session.query(CartItem).filter(CartItem.cart_id.in_(expired_ids)).delete(
            synchronize_session=False
        )
        removed = (
            db.session.query(Cart)
            .filter(Cart.id.in_(expired_ids))
            .delete(synchronize_session=False)
        )
        db.session.commit()
        return removed

    removed = run_with_retry(_unit)
    if removed:
        logger.info("Purged %d expired anonymous carts", removed)
    return removed
