"""
Pytest fixtures for storefront backend tests.

Provides an in-memory application, a per-test table wipe, and a small
catalog (one product, two variants) to build carts, orders and sales on.
"""

from types import SimpleNamespace

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.services import catalog_service, notification_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(autouse=True)
def clear_subscribers():
    notification_service.registry.clear()
    yield
    notification_service.registry.clear()


@pytest.fixture(scope='function')
def attribute_values(db_session):
    """Color (Red, Blue) and Size (S, M, L); returns {"Color:Red": value_id, ...}."""
    color = catalog_service.define_attribute(
        "Color",
        "COLOR",
        [
            {"value": "Red", "color_hex": "#ff0000"},
            {"value": "Blue", "color_hex": "#0000ff"},
        ],
        sort_order=1,
    )
    size = catalog_service.define_attribute("Size", "ENUM", ["S", "M", "L"], sort_order=2)
    return {
        f"{attribute.name}:{value.value}": value.id
        for attribute in (color, size)
        for value in attribute.values
    }


@pytest.fixture(scope='function')
def catalog(db_session, attribute_values):
    """
    Classic Tee at 20.00 with two variants:
    Red / M (stock 10, base price) and Blue / S (stock 5, 25.00 override).
    """
    product = catalog_service.create_product(
        sku="TEE-001",
        name="Classic Tee",
        base_price_cents=2000,
        image_url="https://cdn.example.com/tee.png",
    )
    red_m = catalog_service.create_variant(
        product.id,
        [attribute_values["Color:Red"], attribute_values["Size:M"]],
        stock=10,
    )
    blue_s = catalog_service.create_variant(
        product.id,
        [attribute_values["Color:Blue"], attribute_values["Size:S"]],
        stock=5,
        price_override_cents=2500,
    )
    return SimpleNamespace(
        product_id=product.id,
        red_m=red_m.id,
        blue_s=blue_s.id,
        values=attribute_values,
    )


def line(variant_id: int, quantity: int, unit_price_cents: int = 2000) -> dict:
    """Helper to build a transaction line."""
    return {"variant_id": variant_id, "quantity": quantity, "unit_price_cents": unit_price_cents}
