from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


MOVEMENT_REASONS = ("RESERVE", "RESTORE", "ORDER", "ORDER_CANCEL", "SALE", "SALE_VOID", "ADJUST")


class StockMovement(db.Model):
    """
    Append-only journal of stock mutations.

    ProductVariant.stock is the authoritative counter (guarded updates keep it
    non-negative); every ledger mutation also appends one row here inside the
    same DB transaction. Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_variant_occurred", "variant_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    # Negative for decrements, positive for restores/receipts
    quantity_delta = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(16), nullable=False, index=True)
    reference = db.Column(db.String(64), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "quantity_delta": self.quantity_delta,
            "reason": self.reason,
            "reference": self.reference,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class DocumentSequence(db.Model):
    """Per-type, per-period counter backing order and sale numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "period", name="uq_document_sequences_type_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False)
    period = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
