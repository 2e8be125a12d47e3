"""
Concurrency tests against a file-backed SQLite database.

Each worker thread runs in its own application context (and so its own
session), the way concurrent requests would.
"""

import threading

import pytest

from storefront import create_app
from storefront.errors import AlreadyVoided, InsufficientStock
from storefront.extensions import db
from storefront.services import cart_service, catalog_service, inventory_service, order_service, pos_sale_service
from storefront.services.cart_service import OwnerHint
from storefront.services.inventory_service import StockLine

pytestmark = pytest.mark.concurrency


@pytest.fixture
def concurrent_app(tmp_path):
    db_path = tmp_path / "concurrency.db"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'LEDGER_RETRY_ATTEMPTS': 5,
        'LEDGER_RETRY_BACKOFF': 0.01,
    })

    with app.app_context():
        db.drop_all()
        db.create_all()

        size = catalog_service.define_attribute("Size", "ENUM", ["M"])
        product = catalog_service.create_product(sku="CONCUR-1", name="Concurrent Tee", base_price_cents=1000)
        variant = catalog_service.create_variant(product.id, [size.values[0].id], stock=10)
        app.config["VARIANT_ID"] = variant.id
        db.session.remove()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


def _run_workers(app, target, count):
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                value = target()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def _stock(app):
    with app.app_context():
        try:
            return inventory_service.get_stock(app.config["VARIANT_ID"])
        finally:
            db.session.remove()


def test_last_unit_is_sold_exactly_once(concurrent_app):
    variant_id = concurrent_app.config["VARIANT_ID"]
    with concurrent_app.app_context():
        inventory_service.adjust_stock(variant_id, -9)
        db.session.remove()

    def checkout():
        order = order_service.create_order(
            [{"variant_id": variant_id, "quantity": 1, "unit_price_cents": 1000}],
            customer_id=1,
        )
        return order.id

    results, errors = _run_workers(concurrent_app, checkout, 6)

    assert len(results) == 1
    assert len(errors) == 5
    assert all(isinstance(e, InsufficientStock) for e in errors)
    assert _stock(concurrent_app) == 0


def test_reserve_and_decrement_hands_out_the_last_unit_once(concurrent_app):
    variant_id = concurrent_app.config["VARIANT_ID"]
    with concurrent_app.app_context():
        inventory_service.adjust_stock(variant_id, -9)
        db.session.remove()

    def reserve():
        inventory_service.reserve_and_decrement([StockLine(variant_id, 1)], reference="cart-hold")
        return variant_id

    results, errors = _run_workers(concurrent_app, reserve, 2)

    assert results == [variant_id]
    assert len(errors) == 1
    assert isinstance(errors[0], InsufficientStock)
    assert errors[0].details["available"] == 0
    assert _stock(concurrent_app) == 0


def test_order_numbers_are_unique_under_contention(concurrent_app):
    variant_id = concurrent_app.config["VARIANT_ID"]

    def checkout():
        order = order_service.create_order(
            [{"variant_id": variant_id, "quantity": 1, "unit_price_cents": 1000}],
            customer_id=1,
        )
        return order.order_number

    results, errors = _run_workers(concurrent_app, checkout, 10)

    assert not errors
    assert len(results) == len(set(results)) == 10
    assert _stock(concurrent_app) == 0


def test_concurrent_cart_adds_lose_nothing(concurrent_app):
    variant_id = concurrent_app.config["VARIANT_ID"]

    def add_one():
        return cart_service.add_item(OwnerHint(customer_id=42), variant_id, 1).item_count

    results, errors = _run_workers(concurrent_app, add_one, 5)

    assert not errors
    with concurrent_app.app_context():
        snapshot = cart_service.get_cart(OwnerHint(customer_id=42))
        db.session.remove()
    assert snapshot.item_count == 5
    assert sorted(results) == [1, 2, 3, 4, 5]


def test_concurrent_voids_restore_once(concurrent_app):
    variant_id = concurrent_app.config["VARIANT_ID"]
    with concurrent_app.app_context():
        sale = pos_sale_service.create_sale(
            [{"variant_id": variant_id, "quantity": 4, "unit_price_cents": 1000}],
            staff_id=1,
        )
        sale_id = sale.id
        db.session.remove()
    assert _stock(concurrent_app) == 6

    results, errors = _run_workers(concurrent_app, lambda: pos_sale_service.void_sale(sale_id).id, 4)

    assert results == [sale_id]
    assert len(errors) == 3
    assert all(isinstance(e, AlreadyVoided) for e in errors)
    assert _stock(concurrent_app) == 10
