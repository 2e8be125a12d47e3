# Overview: Service-layer operations for the EAV catalog; attributes, products, variants and signatures.

"""
Catalog Service

Attribute definitions, product CRUD, and variant creation keyed by a
canonical attribute-value signature.

Catalog Invariants (authoritative):
- (attribute_id, value) is unique across the catalog.
- A product's non-deleted variants never share a signature.
- The signature of a variant is derived only from its set of attribute-value
  ids: duplicates removed, sorted ascending, joined with "|". The order in
  which a caller picks values never matters.
- Creating a variant and its junction rows is all-or-nothing.

Visibility:
- Soft-delete and active flags are plain columns. Every query that reads the
  catalog receives an explicit CatalogVisibility; nothing is filtered
  implicitly.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import and_, true
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    ConflictError,
    DuplicateAttributeValue,
    DuplicateVariant,
    NotFoundError,
    ValidationError,
)
from ..models import (
    Attribute,
    AttributeValue,
    CartItem,
    OrderItem,
    PosSaleItem,
    Product,
    ProductAttribute,
    ProductVariant,
    VariantAttributeValue,
)
from ..money import apply_discount, check_cents
from ..validation import (
    coerce_int,
    line_unit_price_cents,
    optional_text,
    require_id,
    require_quantity,
    require_text,
    validate_color_hex,
)

logger = logging.getLogger(__name__)

SIGNATURE_SEPARATOR = "|"
VARIANT_NAME_SEPARATOR = " - "

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "image_url",
    "base_price_cents", "base_cost_cents", "discount_percent", "is_active",
}
VARIANT_MUTABLE_FIELDS = {"variant_sku", "price_override_cents", "cost_override_cents", "is_active"}


@dataclass(frozen=True)
class CatalogVisibility:
    """Explicit visibility predicate threaded through catalog queries."""
    include_inactive: bool = False
    include_deleted: bool = False

    def product_clause(self):
        clauses = []
        if not self.include_deleted:
            clauses.append(Product.is_deleted.is_(False))
        if not self.include_inactive:
            clauses.append(Product.is_active.is_(True))
        return and_(true(), *clauses)

    def variant_clause(self):
        clauses = []
        if not self.include_deleted:
            clauses.append(ProductVariant.is_deleted.is_(False))
        if not self.include_inactive:
            clauses.append(ProductVariant.is_active.is_(True))
        return and_(true(), *clauses)


# What a shopper may see and buy
STOREFRONT = CatalogVisibility()
# Catalog management: inactive rows are visible, deleted rows are not
ADMIN = CatalogVisibility(include_inactive=True)
# Maintenance and history lookups
EVERYTHING = CatalogVisibility(include_inactive=True, include_deleted=True)


@dataclass(frozen=True)
class VariantView:
    """Flattened read model of a variant joined with its product."""
    variant_id: int
    product_id: int
    product_sku: str
    variant_sku: str | None
    product_name: str
    variant_name: str
    image_url: str | None
    unit_price_cents: int
    stock: int

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "product_id": self.product_id,
            "product_sku": self.product_sku,
            "variant_sku": self.variant_sku,
            "product_name": self.product_name,
            "variant_name": self.variant_name,
            "image_url": self.image_url,
            "unit_price_cents": self.unit_price_cents,
            "stock": self.stock,
        }


@dataclass(frozen=True)
class LineSnapshot:
    """Immutable transaction line: names and price as they were at submission."""
    variant_id: int
    product_name: str
    variant_name: str
    product_sku: str
    image_url: str | None
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass
class DuplicateGroup:
    product_id: int
    signature: str
    variant_ids: list[int]
    keep_variant_id: int
    removable_variant_ids: list[int] = field(default_factory=list)
    referenced_duplicate_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "signature": self.signature,
            "variant_ids": self.variant_ids,
            "keep_variant_id": self.keep_variant_id,
            "removable_variant_ids": self.removable_variant_ids,
            "referenced_duplicate_ids": self.referenced_duplicate_ids,
        }


# =============================================================================
# Signatures and pricing
# =============================================================================

def resolve_signature(attribute_value_ids: Iterable[int]) -> str:
    """Canonical key for a set of attribute-value ids."""
    ids = {require_id(v, "attribute_value_id") for v in attribute_value_ids}
    return SIGNATURE_SEPARATOR.join(str(i) for i in sorted(ids))


def effective_unit_price_cents(
    base_price_cents: int,
    price_override_cents: int | None,
    discount_percent: int | None,
) -> int:
    """Current selling price: variant override or product base, less discount."""
    price = price_override_cents if price_override_cents is not None else base_price_cents
    return apply_discount(price, discount_percent)


# =============================================================================
# Attributes
# =============================================================================

def _normalize_value_spec(spec, value_type: str) -> dict:
    if isinstance(spec, str):
        spec = {"value": spec}
    if not isinstance(spec, dict):
        raise ValidationError("attribute values must be strings or objects")
    value = require_text(spec.get("value"), "value", max_length=120)
    color_hex = spec.get("color_hex")
    if color_hex is not None:
        color_hex = validate_color_hex(color_hex)
    elif value_type == "COLOR" and value.startswith("#"):
        color_hex = validate_color_hex(value)
    return {
        "value": value,
        "display_value": optional_text(spec.get("display_value"), "display_value", max_length=120),
        "color_hex": color_hex,
        "sort_order": coerce_int(spec.get("sort_order", 0), "sort_order"),
    }


def define_attribute(
    name: str,
    value_type: str = "ENUM",
    values: Iterable = (),
    *,
    display_name: str | None = None,
    sort_order: int = 0,
) -> Attribute:
    """
    Create an attribute together with its values in one transaction.

    Raises:
        ConflictError: attribute name already defined
        DuplicateAttributeValue: a value repeats; nothing is written
    """
    name = require_text(name, "name", max_length=64)
    value_type = require_text(value_type, "value_type").upper()
    if value_type not in Attribute.VALUE_TYPES:
        raise ValidationError(f"value_type must be one of {', '.join(Attribute.VALUE_TYPES)}")

    specs = [_normalize_value_spec(v, value_type) for v in values]
    seen: set[str] = set()
    for spec in specs:
        if spec["value"] in seen:
            raise DuplicateAttributeValue(None, spec["value"])
        seen.add(spec["value"])

    if db.session.query(Attribute.id).filter_by(name=name).first():
        raise ConflictError(f"Attribute {name!r} already exists", details={"name": name})

    attribute = Attribute(
        name=name,
        display_name=optional_text(display_name, "display_name", max_length=120) or name,
        value_type=value_type,
        sort_order=coerce_int(sort_order, "sort_order"),
    )
    db.session.add(attribute)
    try:
        db.session.flush()
        for spec in specs:
            db.session.add(AttributeValue(attribute_id=attribute.id, **spec))
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Attribute {name!r} already exists", details={"name": name})

    logger.info("Defined attribute %s with %d values", name, len(specs))
    return attribute


def add_attribute_value(
    attribute_id: int,
    value: str,
    *,
    display_value: str | None = None,
    color_hex: str | None = None,
    sort_order: int = 0,
) -> AttributeValue:
    attribute_id = require_id(attribute_id, "attribute_id")
    attribute = db.session.get(Attribute, attribute_id)
    if attribute is None:
        raise NotFoundError("Attribute not found")

    spec = _normalize_value_spec(
        {"value": value, "display_value": display_value, "color_hex": color_hex, "sort_order": sort_order},
        attribute.value_type,
    )
    existing = (
        db.session.query(AttributeValue.id)
        .filter_by(attribute_id=attribute_id, value=spec["value"])
        .first()
    )
    if existing:
        raise DuplicateAttributeValue(attribute_id, spec["value"])

    av = AttributeValue(attribute_id=attribute_id, **spec)
    db.session.add(av)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateAttributeValue(attribute_id, spec["value"])
    return av


def remove_attribute_value(value_id: int) -> None:
    """Delete an attribute value that no variant references."""
    value_id = require_id(value_id, "value_id")
    av = db.session.get(AttributeValue, value_id)
    if av is None:
        raise NotFoundError("Attribute value not found")

    in_use = (
        db.session.query(VariantAttributeValue.id)
        .filter_by(attribute_value_id=value_id)
        .first()
    )
    if in_use:
        raise ConflictError(
            "Cannot remove a value that is used by product variants",
            details={"value_id": value_id},
        )

    db.session.delete(av)
    db.session.commit()


def list_attributes() -> list[dict]:
    attributes = (
        db.session.query(Attribute)
        .order_by(Attribute.sort_order.asc(), Attribute.name.asc())
        .all()
    )
    result = []
    for attribute in attributes:
        data = attribute.to_dict()
        data["values"] = [
            v.to_dict() for v in sorted(attribute.values, key=lambda v: (v.sort_order, v.id))
        ]
        result.append(data)
    return result


# =============================================================================
# Products
# =============================================================================

def _validate_product_patch(patch: dict) -> dict:
    clean = {}
    for key, value in patch.items():
        if key not in PRODUCT_MUTABLE_FIELDS:
            continue
        if key == "sku":
            clean[key] = require_text(value, "sku", max_length=64)
        elif key == "name":
            clean[key] = require_text(value, "name", max_length=255)
        elif key in ("description", "image_url"):
            clean[key] = optional_text(value, key)
        elif key == "base_price_cents":
            clean[key] = check_cents(value, key)
        elif key == "base_cost_cents":
            clean[key] = None if value is None else check_cents(value, key)
        elif key == "discount_percent":
            pct = coerce_int(value, key)
            if not 0 <= pct <= 100:
                raise ValidationError("discount_percent must be between 0 and 100")
            clean[key] = pct
        elif key == "is_active":
            clean[key] = bool(value)
    return clean


def create_product(
    *,
    sku: str,
    name: str,
    base_price_cents: int,
    base_cost_cents: int | None = None,
    discount_percent: int = 0,
    description: str | None = None,
    image_url: str | None = None,
    is_active: bool = True,
) -> Product:
    patch = _validate_product_patch({
        "sku": sku,
        "name": name,
        "base_price_cents": base_price_cents,
        "base_cost_cents": base_cost_cents,
        "discount_percent": discount_percent,
        "description": description,
        "image_url": image_url,
        "is_active": is_active,
    })

    if db.session.query(Product.id).filter_by(sku=patch["sku"]).first():
        raise ConflictError("SKU already exists", details={"sku": patch["sku"]})

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("SKU already exists", details={"sku": patch["sku"]})
    return product


def get_product(product_id: int, visibility: CatalogVisibility = ADMIN) -> Product:
    product = (
        db.session.query(Product)
        .filter(Product.id == product_id, visibility.product_clause())
        .first()
    )
    if product is None:
        raise NotFoundError("Product not found")
    return product


def update_product(product_id: int, patch: dict) -> Product:
    """Apply a partial update. Price edits never touch transaction snapshots."""
    product = get_product(product_id)
    clean = _validate_product_patch(patch)

    if "sku" in clean and clean["sku"] != product.sku:
        if db.session.query(Product.id).filter_by(sku=clean["sku"]).first():
            raise ConflictError("SKU already exists", details={"sku": clean["sku"]})

    for key, value in clean.items():
        setattr(product, key, value)
    db.session.commit()
    return product


def delete_product(product_id: int) -> Product:
    """Soft delete: the row stays so history and snapshots keep resolving."""
    product = get_product(product_id)
    product.is_deleted = True
    product.is_active = False
    db.session.commit()
    logger.info("Soft-deleted product %s (%s)", product.id, product.sku)
    return product


def list_products(visibility: CatalogVisibility = STOREFRONT) -> list[Product]:
    return (
        db.session.query(Product)
        .filter(visibility.product_clause())
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )


def set_product_attribute(product_id: int, attribute_id: int, value: str) -> ProductAttribute:
    """Assign (or replace) a static attribute such as Material = Cotton."""
    product = get_product(product_id)
    attribute_id = require_id(attribute_id, "attribute_id")
    if db.session.get(Attribute, attribute_id) is None:
        raise NotFoundError("Attribute not found")
    value = require_text(value, "value", max_length=255)

    assignment = (
        db.session.query(ProductAttribute)
        .filter_by(product_id=product.id, attribute_id=attribute_id)
        .first()
    )
    if assignment is None:
        assignment = ProductAttribute(product_id=product.id, attribute_id=attribute_id, value=value)
        db.session.add(assignment)
    else:
        assignment.value = value
    db.session.commit()
    return assignment


# =============================================================================
# Variants
# =============================================================================

def _load_attribute_values(ids: set[int]) -> list[AttributeValue]:
    if not ids:
        return []
    rows = db.session.query(AttributeValue).filter(AttributeValue.id.in_(ids)).all()
    missing = ids - {r.id for r in rows}
    if missing:
        raise ValidationError(
            "Unknown attribute values",
            details={"attribute_value_ids": sorted(missing)},
        )

    by_attribute: dict[int, list[int]] = defaultdict(list)
    for row in rows:
        by_attribute[row.attribute_id].append(row.id)
    clashing = {aid: sorted(vids) for aid, vids in by_attribute.items() if len(vids) > 1}
    if clashing:
        raise ValidationError(
            "A variant may pick at most one value per attribute",
            details={"attributes": clashing},
        )
    return rows


def _find_live_variant_by_signature(product_id: int, signature: str) -> int | None:
    row = (
        db.session.query(ProductVariant.id)
        .filter(
            ProductVariant.product_id == product_id,
            ProductVariant.signature == signature,
            ProductVariant.is_deleted.is_(False),
        )
        .first()
    )
    return row[0] if row else None


def create_variant(
    product_id: int,
    attribute_value_ids: Iterable[int],
    *,
    price_override_cents: int | None = None,
    cost_override_cents: int | None = None,
    stock: int = 0,
    variant_sku: str | None = None,
    is_active: bool = True,
) -> ProductVariant:
    """
    Create a variant from a combination of attribute values.

    Raises:
        DuplicateVariant: a live variant of the product has the same signature
        ValidationError: unknown values, or two values of one attribute
    """
    product = get_product(product_id)
    ids = {require_id(v, "attribute_value_id") for v in attribute_value_ids}
    _load_attribute_values(ids)
    signature = resolve_signature(ids)

    stock = coerce_int(stock, "stock")
    if stock < 0:
        raise ValidationError("stock cannot be negative")
    if price_override_cents is not None:
        price_override_cents = check_cents(price_override_cents, "price_override_cents")
    if cost_override_cents is not None:
        cost_override_cents = check_cents(cost_override_cents, "cost_override_cents")

    existing_id = _find_live_variant_by_signature(product.id, signature)
    if existing_id is not None:
        raise DuplicateVariant(product.id, signature, existing_id)

    variant = ProductVariant(
        product_id=product.id,
        variant_sku=optional_text(variant_sku, "variant_sku", max_length=64),
        price_override_cents=price_override_cents,
        cost_override_cents=cost_override_cents,
        stock=stock,
        signature=signature,
        is_active=bool(is_active),
    )
    for value_id in sorted(ids):
        variant.attribute_links.append(VariantAttributeValue(attribute_value_id=value_id))
    db.session.add(variant)

    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent writer won the race for this signature
        db.session.rollback()
        raise DuplicateVariant(product.id, signature, _find_live_variant_by_signature(product.id, signature))

    logger.info("Created variant %s of product %s (signature %r)", variant.id, product.id, signature)
    return variant


def update_variant(variant_id: int, patch: dict) -> ProductVariant:
    """Update price overrides, SKU or active flag. Stock moves only through the ledger."""
    variant = (
        db.session.query(ProductVariant)
        .filter(ProductVariant.id == variant_id, ADMIN.variant_clause())
        .first()
    )
    if variant is None:
        raise NotFoundError("Variant not found")

    for key, value in patch.items():
        if key not in VARIANT_MUTABLE_FIELDS:
            continue
        if key in ("price_override_cents", "cost_override_cents"):
            value = None if value is None else check_cents(value, key)
        elif key == "variant_sku":
            value = optional_text(value, key, max_length=64)
        else:
            value = bool(value)
        setattr(variant, key, value)
    db.session.commit()
    return variant


def delete_variant(variant_id: int) -> ProductVariant:
    """Soft delete. The signature becomes free for a new live variant."""
    variant = db.session.get(ProductVariant, require_id(variant_id, "variant_id"))
    if variant is None or variant.is_deleted:
        raise NotFoundError("Variant not found")
    variant.is_deleted = True
    variant.is_active = False
    db.session.commit()
    return variant


def _variant_names(variant_ids: Iterable[int]) -> dict[int, str]:
    """Display names built from attribute value labels, ordered by attribute."""
    ids = list(variant_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(
            VariantAttributeValue.variant_id,
            AttributeValue.value,
            AttributeValue.display_value,
        )
        .join(AttributeValue, AttributeValue.id == VariantAttributeValue.attribute_value_id)
        .join(Attribute, Attribute.id == AttributeValue.attribute_id)
        .filter(VariantAttributeValue.variant_id.in_(ids))
        .order_by(Attribute.sort_order.asc(), Attribute.id.asc())
        .all()
    )
    labels: dict[int, list[str]] = defaultdict(list)
    for variant_id, value, display_value in rows:
        labels[variant_id].append(display_value or value)
    return {vid: VARIANT_NAME_SEPARATOR.join(labels.get(vid, [])) for vid in ids}


def get_variant_views(
    variant_ids: Iterable[int],
    visibility: CatalogVisibility = STOREFRONT,
) -> dict[int, VariantView]:
    """Batch lookup of flattened variant views; invisible ids are omitted."""
    ids = set(variant_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(
            ProductVariant.id,
            ProductVariant.product_id,
            ProductVariant.variant_sku,
            ProductVariant.price_override_cents,
            ProductVariant.stock,
            Product.sku,
            Product.name,
            Product.image_url,
            Product.base_price_cents,
            Product.discount_percent,
        )
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(
            ProductVariant.id.in_(ids),
            visibility.variant_clause(),
            visibility.product_clause(),
        )
        .all()
    )
    names = _variant_names(r.id for r in rows)
    return {
        r.id: VariantView(
            variant_id=r.id,
            product_id=r.product_id,
            product_sku=r.sku,
            variant_sku=r.variant_sku,
            product_name=r.name,
            variant_name=names.get(r.id, ""),
            image_url=r.image_url,
            unit_price_cents=effective_unit_price_cents(
                r.base_price_cents, r.price_override_cents, r.discount_percent
            ),
            stock=r.stock,
        )
        for r in rows
    }


def get_variant_view(variant_id: int, visibility: CatalogVisibility = STOREFRONT) -> VariantView | None:
    return get_variant_views([variant_id], visibility).get(variant_id)


def snapshot_transaction_lines(lines: Iterable[dict]) -> list[LineSnapshot]:
    """
    Validate submitted lines and freeze them into immutable snapshots.

    Each variant must be sellable (active variant of an active, non-deleted
    product). The unit price is the submitted one, never a live re-lookup.
    """
    parsed = []
    for line in lines:
        if not isinstance(line, dict):
            raise ValidationError("each line must be an object")
        parsed.append((
            require_id(line.get("variant_id"), "variant_id"),
            require_quantity(line.get("quantity")),
            line_unit_price_cents(line),
        ))

    views = get_variant_views({p[0] for p in parsed}, STOREFRONT)
    unavailable = sorted({p[0] for p in parsed} - views.keys())
    if unavailable:
        raise ValidationError(
            "Some variants are not available for sale",
            details={"variant_ids": unavailable},
        )

    snapshots = []
    for variant_id, quantity, unit_price_cents in parsed:
        view = views[variant_id]
        snapshots.append(LineSnapshot(
            variant_id=variant_id,
            product_name=view.product_name,
            variant_name=view.variant_name,
            product_sku=view.variant_sku or view.product_sku,
            image_url=view.image_url,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
        ))
    return snapshots


# =============================================================================
# Duplicate audit (maintenance aid for pre-existing data)
# =============================================================================

def _referenced_variant_ids(variant_ids: set[int]) -> set[int]:
    referenced: set[int] = set()
    for model in (CartItem, OrderItem, PosSaleItem):
        rows = (
            db.session.query(model.variant_id)
            .filter(model.variant_id.in_(variant_ids))
            .distinct()
            .all()
        )
        referenced.update(r[0] for r in rows)
    return referenced


def audit_duplicates(product_id: int | None = None) -> list[DuplicateGroup]:
    """
    Group live variants by the signature of their junction rows and report
    groups with more than one member.

    Keep rule: the variant referenced by cart, order or sale items wins
    (lowest id when several are referenced, lowest id when none are).
    Unreferenced extras are removable; referenced extras are reported only.
    Read-only: see apply_duplicate_audit.
    """
    query = db.session.query(ProductVariant.id, ProductVariant.product_id).filter(
        ProductVariant.is_deleted.is_(False)
    )
    if product_id is not None:
        query = query.filter(ProductVariant.product_id == product_id)
    variants = query.all()
    if not variants:
        return []

    variant_ids = {v.id for v in variants}
    value_sets: dict[int, set[int]] = defaultdict(set)
    links = (
        db.session.query(VariantAttributeValue.variant_id, VariantAttributeValue.attribute_value_id)
        .filter(VariantAttributeValue.variant_id.in_(variant_ids))
        .all()
    )
    for variant_id, value_id in links:
        value_sets[variant_id].add(value_id)

    groups: dict[tuple[int, str], list[int]] = defaultdict(list)
    for v in variants:
        groups[(v.product_id, resolve_signature(value_sets.get(v.id, ())))].append(v.id)

    duplicates = {key: sorted(ids) for key, ids in groups.items() if len(ids) > 1}
    if not duplicates:
        return []

    referenced = _referenced_variant_ids({vid for ids in duplicates.values() for vid in ids})

    report = []
    for (pid, signature), ids in sorted(duplicates.items()):
        in_use = [vid for vid in ids if vid in referenced]
        keep = in_use[0] if in_use else ids[0]
        report.append(DuplicateGroup(
            product_id=pid,
            signature=signature,
            variant_ids=ids,
            keep_variant_id=keep,
            removable_variant_ids=[vid for vid in ids if vid != keep and vid not in referenced],
            referenced_duplicate_ids=[vid for vid in in_use if vid != keep],
        ))
        logger.warning(
            "Duplicate variants for product %s signature %r: keep %s, removable %s",
            pid, signature, keep, report[-1].removable_variant_ids,
        )
    return report


def apply_duplicate_audit(groups: Iterable[DuplicateGroup]) -> int:
    """Soft-delete the removable variants of an audit report."""
    removable = [vid for g in groups for vid in g.removable_variant_ids]
    if not removable:
        return 0
    variants = db.session.query(ProductVariant).filter(ProductVariant.id.in_(removable)).all()
    for variant in variants:
        variant.is_deleted = True
        variant.is_active = False
    db.session.commit()
    logger.info("Soft-deleted %d duplicate variants", len(variants))
    return len(variants)
