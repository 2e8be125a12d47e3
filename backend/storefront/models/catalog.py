from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Attribute(db.Model):
    """
    EAV attribute definition (e.g. "Color", "Size").

    Attributes and their values are long-lived: once a value is referenced by
    a variant it is never hard-deleted.
    """
    __tablename__ = "attributes"
    __table_args__ = {"sqlite_autoincrement": True}

    VALUE_TYPES = ("TEXT", "ENUM", "COLOR")

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    display_name = db.Column(db.String(120), nullable=False)
    value_type = db.Column(db.String(16), nullable=False, default="ENUM")
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    values = db.relationship(
        "AttributeValue",
        back_populates="attribute",
        lazy=True,
        order_by="AttributeValue.sort_order",
    )

    def __repr__(self) -> str:
        return f"<Attribute id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "value_type": self.value_type,
            "sort_order": self.sort_order,
            "created_at": to_utc_z(self.created_at),
        }


class AttributeValue(db.Model):
    __tablename__ = "attribute_values"
    __table_args__ = (
        # (attribute_id, value) is unique across the catalog
        db.UniqueConstraint("attribute_id", "value", name="uq_attribute_values_attribute_value"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    attribute_id = db.Column(db.Integer, db.ForeignKey("attributes.id"), nullable=False, index=True)
    value = db.Column(db.String(120), nullable=False)
    display_value = db.Column(db.String(120), nullable=True)
    color_hex = db.Column(db.String(7), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    attribute = db.relationship("Attribute", back_populates="values")

    @property
    def label(self) -> str:
        return self.display_value or self.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "attribute_id": self.attribute_id,
            "value": self.value,
            "display_value": self.display_value,
            "color_hex": self.color_hex,
            "sort_order": self.sort_order,
        }


class Product(db.Model):
    """
    Product master data.

    PRICING: base_price_cents is the mutable catalog price. Variants may carry
    their own override; transaction lines keep an immutable snapshot. The
    three are never conflated.

    VISIBILITY: is_active / is_deleted are plain columns. Queries apply an
    explicit CatalogVisibility predicate; there is no global filter.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint(
            "discount_percent >= 0 AND discount_percent <= 100",
            name="ck_products_discount_percent",
        ),
        db.Index("ix_products_active_deleted", "is_active", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    # Authoritative storage in cents
    base_price_cents = db.Column(db.Integer, nullable=False)
    base_cost_cents = db.Column(db.Integer, nullable=True)
    discount_percent = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    attributes = db.relationship(
        "ProductAttribute", back_populates="product", lazy=True, cascade="all, delete-orphan"
    )
    variants = db.relationship("ProductVariant", back_populates="product", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "base_price_cents": self.base_price_cents,
            "base_cost_cents": self.base_cost_cents,
            "discount_percent": self.discount_percent,
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "attributes": [a.to_dict() for a in self.attributes],
        }


class ProductAttribute(db.Model):
    """Static attribute assignment on a product, e.g. Material = Cotton."""
    __tablename__ = "product_attributes"
    __table_args__ = (
        db.UniqueConstraint("product_id", "attribute_id", name="uq_product_attributes_product_attribute"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    attribute_id = db.Column(db.Integer, db.ForeignKey("attributes.id"), nullable=False, index=True)
    value = db.Column(db.String(255), nullable=False)

    product = db.relationship("Product", back_populates="attributes")
    attribute = db.relationship("Attribute")

    def to_dict(self) -> dict:
        return {
            "attribute_id": self.attribute_id,
            "attribute_name": self.attribute.name if self.attribute else None,
            "value": self.value,
        }


class ProductVariant(db.Model):
    """
    Sellable variant of a product.

    signature is the canonical key of the variant's attribute-value set
    (sorted ids joined with "|"). It is persisted so the datastore can enforce
    uniqueness among a product's live variants.

    stock is mutated only through the inventory ledger's guarded updates.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variants_stock_nonnegative"),
        db.Index(
            "uq_product_variants_live_signature",
            "product_id",
            "signature",
            unique=True,
            sqlite_where=db.text("is_deleted = 0"),
            postgresql_where=db.text("NOT is_deleted"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_sku = db.Column(db.String(64), nullable=True)

    price_override_cents = db.Column(db.Integer, nullable=True)
    cost_override_cents = db.Column(db.Integer, nullable=True)

    stock = db.Column(db.Integer, nullable=False, default=0)
    signature = db.Column(db.String(512), nullable=False, default="")

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="variants")
    attribute_links = db.relationship(
        "VariantAttributeValue",
        back_populates="variant",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} product_id={self.product_id} signature={self.signature!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_sku": self.variant_sku,
            "price_override_cents": self.price_override_cents,
            "cost_override_cents": self.cost_override_cents,
            "stock": self.stock,
            "signature": self.signature,
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
            "attribute_value_ids": sorted(link.attribute_value_id for link in self.attribute_links),
            "created_at": to_utc_z(self.created_at),
        }


class VariantAttributeValue(db.Model):
    """Junction row: variant -> attribute value."""
    __tablename__ = "variant_attribute_values"
    __table_args__ = (
        db.UniqueConstraint("variant_id", "attribute_value_id", name="uq_variant_attribute_values_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)
    attribute_value_id = db.Column(
        db.Integer, db.ForeignKey("attribute_values.id"), nullable=False, index=True
    )

    variant = db.relationship("ProductVariant", back_populates="attribute_links")
    attribute_value = db.relationship("AttributeValue")
