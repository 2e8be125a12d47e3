"""
POS sale tests: completion, void and stock restoration.
"""

import re
from datetime import datetime

import pytest

from conftest import line
from storefront.errors import AlreadyVoided, EmptySale, InsufficientStock, NotFoundError, ValidationError
from storefront.models import PosSale
from storefront.services import inventory_service, notification_service, pos_sale_service


def test_void_restores_stock(db_session, catalog):
    assert inventory_service.get_stock(catalog.red_m) == 10

    sale = pos_sale_service.create_sale([line(catalog.red_m, 3)], staff_id=1)
    assert sale.status == "COMPLETED"
    assert inventory_service.get_stock(catalog.red_m) == 7

    voided = pos_sale_service.void_sale(sale.id, reason="Customer changed mind", staff_id=2)
    assert voided.status == "VOIDED"
    assert voided.void_reason == "Customer changed mind"
    assert voided.voided_by_staff_id == 2
    assert inventory_service.get_stock(catalog.red_m) == 10

    with pytest.raises(AlreadyVoided):
        pos_sale_service.void_sale(sale.id)
    assert inventory_service.get_stock(catalog.red_m) == 10


def test_sale_number_and_totals(db_session, catalog):
    sale = pos_sale_service.create_sale(
        [line(catalog.red_m, 2), line(catalog.blue_s, 1, 2500)],
        staff_id=1,
        payment_type="card",
        notes="Counter 2",
    )

    assert re.fullmatch(r"POS-\d{8}-0001", sale.sale_number)
    assert sale.payment_type == "CARD"
    assert sale.total_cents == 6500
    assert sale.completed_at is not None
    assert [item.image_url for item in sale.items] == ["https://cdn.example.com/tee.png"] * 2

    second = pos_sale_service.create_sale([line(catalog.red_m, 1)], staff_id=1)
    assert second.sale_number.endswith("-0002")


def test_create_sale_validation(db_session, catalog):
    with pytest.raises(EmptySale):
        pos_sale_service.create_sale([], staff_id=1)
    with pytest.raises(ValidationError):
        pos_sale_service.create_sale([line(catalog.red_m, 1)], staff_id=1, payment_type="BARTER")
    with pytest.raises(ValidationError):
        pos_sale_service.create_sale([{"variant_id": catalog.red_m, "quantity": 1, "unit_price": 20.0}], staff_id=1)


def test_insufficient_stock_creates_no_sale(db_session, catalog):
    with pytest.raises(InsufficientStock):
        pos_sale_service.create_sale([line(catalog.blue_s, 6, 2500)], staff_id=1)

    assert db_session.query(PosSale).count() == 0
    assert inventory_service.get_stock(catalog.blue_s) == 5


def test_get_sale_by_id_or_number(db_session, catalog):
    sale = pos_sale_service.create_sale([line(catalog.red_m, 1)], staff_id=1)

    assert pos_sale_service.get_sale(sale.id).id == sale.id
    assert pos_sale_service.get_sale(sale.sale_number).id == sale.id
    assert pos_sale_service.get_sale(str(sale.id)).id == sale.id

    with pytest.raises(NotFoundError):
        pos_sale_service.get_sale("POS-19990101-0001")


def test_list_sales_filters(db_session, catalog):
    cash = pos_sale_service.create_sale([line(catalog.red_m, 1)], staff_id=1)
    pos_sale_service.create_sale([line(catalog.red_m, 1)], staff_id=1, payment_type="CARD")
    pos_sale_service.void_sale(cash.id)

    assert pos_sale_service.list_sales()["count"] == 2
    assert [s["id"] for s in pos_sale_service.list_sales(status="VOIDED")["items"]] == [cash.id]
    assert pos_sale_service.list_sales(payment_type="CARD")["count"] == 1


def test_list_sales_by_date_range(db_session, catalog):
    sales = [pos_sale_service.create_sale([line(catalog.red_m, 1)], staff_id=1) for _ in range(3)]
    for sale, day in zip(sales, (1, 2, 3)):
        db_session.get(PosSale, sale.id).created_at = datetime(2026, 3, day, 18, 30)
    db_session.commit()

    second_day = pos_sale_service.list_sales(start="2026-03-02T00:00:00Z", end="2026-03-02T23:59:59Z")
    assert [s["id"] for s in second_day["items"]] == [sales[1].id]
    assert pos_sale_service.list_sales(start=datetime(2026, 3, 2, 18, 30))["count"] == 2
    assert pos_sale_service.list_sales(end="2026-03-01T18:30:00")["count"] == 1

    with pytest.raises(ValidationError):
        pos_sale_service.list_sales(start="yesterday")


def test_void_is_published(db_session, catalog):
    events = []
    notification_service.subscribe("sale.voided", events.append)
    sale = pos_sale_service.create_sale([line(catalog.red_m, 1)], staff_id=1)

    pos_sale_service.void_sale(sale.id, staff_id=3)

    assert len(events) == 1
    assert events[0].from_status == "COMPLETED"
    assert events[0].to_status == "VOIDED"
    assert events[0].actor_id == 3
