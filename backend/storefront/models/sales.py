from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALE_COMPLETED = "COMPLETED"
SALE_VOIDED = "VOIDED"

PAYMENT_TYPES = ("CASH", "CARD", "CHECK")


class PosSale(db.Model):
    """
    Point-of-sale sale document.

    A sale is COMPLETED as soon as its stock decrement commits; the only
    further transition is a void, which restores stock exactly once.
    """
    __tablename__ = "pos_sales"
    __table_args__ = (
        db.Index("ix_pos_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "POS-20260301-0001")
    sale_number = db.Column(db.String(32), nullable=False, unique=True)

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)
    staff_id = db.Column(db.Integer, nullable=False, index=True)
    payment_type = db.Column(db.String(16), nullable=False, default="CASH")

    subtotal_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Void audit trail
    voided_by_staff_id = db.Column(db.Integer, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("PosSaleItem", back_populates="sale", lazy=True, order_by="PosSaleItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "status": self.status,
            "staff_id": self.staff_id,
            "payment_type": self.payment_type,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "voided_by_staff_id": self.voided_by_staff_id,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PosSaleItem(db.Model):
    """Immutable line snapshot on a sale."""
    __tablename__ = "pos_sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    variant_name = db.Column(db.String(255), nullable=False, default="")
    product_sku = db.Column(db.String(64), nullable=False)
    image_url = db.Column(db.String(512), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("PosSale", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "product_sku": self.product_sku,
            "image_url": self.image_url,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
