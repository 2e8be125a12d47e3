"""
Inventory ledger tests: all-or-nothing decrements and non-negative stock.
"""

import random

import pytest

from storefront.errors import InsufficientStock, NotFoundError, ValidationError
from storefront.models import StockMovement
from storefront.services import inventory_service
from storefront.services.inventory_service import StockLine


def test_decrement_combines_lines_per_variant(db_session, catalog):
    inventory_service.reserve_and_decrement(
        [StockLine(catalog.red_m, 2), (catalog.red_m, 3), {"variant_id": catalog.blue_s, "quantity": 1}],
        reference="TEST-1",
    )

    assert inventory_service.get_stock(catalog.red_m) == 5
    assert inventory_service.get_stock(catalog.blue_s) == 4

    movements = inventory_service.list_movements(catalog.red_m)
    assert [(m.quantity_delta, m.reason, m.reference) for m in movements] == [(-5, "RESERVE", "TEST-1")]


def test_failing_line_rolls_back_every_line(db_session, catalog):
    with pytest.raises(InsufficientStock) as exc:
        inventory_service.reserve_and_decrement([
            StockLine(catalog.red_m, 2),
            StockLine(catalog.blue_s, 6),
        ])

    assert exc.value.variant_id == catalog.blue_s
    assert exc.value.available == 5
    assert inventory_service.get_stock(catalog.red_m) == 10
    assert inventory_service.get_stock(catalog.blue_s) == 5
    assert db_session.query(StockMovement).count() == 0


def test_first_failing_line_is_named(db_session, catalog):
    with pytest.raises(InsufficientStock) as exc:
        inventory_service.reserve_and_decrement([
            StockLine(catalog.red_m, 11),
            StockLine(catalog.blue_s, 6),
        ])

    assert exc.value.variant_id == catalog.red_m


def test_stock_never_goes_negative(db_session, catalog):
    rng = random.Random(7)
    expected = {catalog.red_m: 10, catalog.blue_s: 5}
    decremented = 0

    for _ in range(40):
        variant_id = rng.choice([catalog.red_m, catalog.blue_s])
        quantity = rng.randint(1, 4)
        try:
            inventory_service.reserve_and_decrement([StockLine(variant_id, quantity)])
        except InsufficientStock:
            assert quantity > expected[variant_id]
            continue
        expected[variant_id] -= quantity
        decremented += quantity

    for variant_id, stock in expected.items():
        assert stock >= 0
        assert inventory_service.get_stock(variant_id) == stock

    journal = sum(m.quantity_delta for m in db_session.query(StockMovement).all())
    assert journal == -decremented


def test_restore_stock(db_session, catalog):
    inventory_service.reserve_and_decrement([StockLine(catalog.red_m, 4)])
    inventory_service.restore_stock([StockLine(catalog.red_m, 4)], reference="TEST-2")

    assert inventory_service.get_stock(catalog.red_m) == 10
    latest = inventory_service.list_movements(catalog.red_m, limit=1)[0]
    assert (latest.quantity_delta, latest.reason) == (4, "RESTORE")


def test_adjust_stock(db_session, catalog):
    assert inventory_service.adjust_stock(catalog.red_m, 5, note="Delivery 42") == 15
    assert inventory_service.adjust_stock(catalog.red_m, -15) == 0

    with pytest.raises(InsufficientStock):
        inventory_service.adjust_stock(catalog.red_m, -1)

    notes = [m.note for m in inventory_service.list_movements(catalog.red_m)]
    assert notes == [None, "Delivery 42"]


def test_invalid_input(db_session, catalog):
    with pytest.raises(ValidationError):
        inventory_service.reserve_and_decrement([])
    with pytest.raises(ValidationError):
        inventory_service.reserve_and_decrement([StockLine(catalog.red_m, 0)])
    with pytest.raises(ValidationError):
        inventory_service.reserve_and_decrement([StockLine(catalog.red_m, 1)], reason="THEFT")
    with pytest.raises(ValidationError):
        inventory_service.adjust_stock(catalog.red_m, 0)
    with pytest.raises(NotFoundError):
        inventory_service.reserve_and_decrement([StockLine(99999, 1)])
