"""
Catalog service tests.
"""

from decimal import Decimal

import pytest

from posledger.services import products_service
from posledger.services.ledger_service import apply_sale
from posledger.services.products_service import ProductError
from posledger.validation import ConflictError, ValidationError


def _payload(**overrides):
    payload = {
        "sku": "NEW-001",
        "name": "New Product",
        "unit": "pcs",
        "cost_price": "40.00",
        "selling_price": "60.00",
        "current_stock": 12,
        "reorder_level": 4,
    }
    payload.update(overrides)
    return payload


def test_create_product_with_opening_stock(db_session, category):
    product, warnings = products_service.create_product(_payload(category_id=category.id))

    assert warnings == []
    assert product.id is not None
    assert product.current_stock == Decimal("12")
    assert product.selling_price == Decimal("60.00")
    assert product.category_id == category.id


def test_selling_below_cost_is_a_warning(db_session):
    product, warnings = products_service.create_product(_payload(cost_price="70", selling_price="60"))

    assert product.id is not None
    assert warnings == ["selling_price is below cost_price"]


def test_duplicate_sku_conflicts(db_session, product_a):
    with pytest.raises(ConflictError):
        products_service.create_product(_payload(sku=product_a.sku))


@pytest.mark.parametrize("field,value", [
    ("cost_price", "-1"),
    ("selling_price", "100000000"),
    ("current_stock", -5),
    ("reorder_level", "-0.5"),
])
def test_invalid_numbers_rejected(db_session, field, value):
    with pytest.raises(ValidationError) as excinfo:
        products_service.create_product(_payload(**{field: value}))
    assert field in excinfo.value.fields


def test_missing_required_fields(db_session):
    with pytest.raises(ValidationError) as excinfo:
        products_service.create_product({"name": "No SKU"})
    assert "sku" in excinfo.value.fields


def test_unknown_category(db_session):
    with pytest.raises(ValidationError):
        products_service.create_product(_payload(category_id=999))


def test_update_cannot_touch_stock(db_session, product_a):
    with pytest.raises(ValidationError) as excinfo:
        products_service.update_product(product_a.id, {"current_stock": 100})
    assert "current_stock" in excinfo.value.fields


def test_update_master_data(db_session, product_a):
    product, warnings = products_service.update_product(product_a.id, {"name": "Renamed", "selling_price": "65"})

    assert product.name == "Renamed"
    assert product.selling_price == Decimal("65.00")
    assert product.current_stock == Decimal("10")
    assert warnings == []


def test_update_warns_against_existing_cost(db_session, product_a):
    _, warnings = products_service.update_product(product_a.id, {"selling_price": "10"})
    assert warnings == ["selling_price is below cost_price"]


def test_delete_unreferenced_product(db_session, product_a):
    products_service.delete_product(product_a.id)

    with pytest.raises(ProductError):
        products_service.get_product(product_a.id)


def test_delete_product_with_history_conflicts(db_session, product_a):
    apply_sale([{"product_id": product_a.id, "quantity": 1}])

    with pytest.raises(ConflictError):
        products_service.delete_product(product_a.id)


def test_list_filters(db_session, product_a, product_b):
    rows, total = products_service.list_products(q="prod-a")
    assert total == 1 and rows[0].id == product_a.id

    rows, total = products_service.list_products(stock="low")
    assert [p.id for p in rows] == [product_b.id]

    apply_sale([{"product_id": product_b.id, "quantity": 2}])
    rows, total = products_service.list_products(stock="out")
    assert [p.id for p in rows] == [product_b.id]

    rows, total = products_service.list_products(take=1, skip=1)
    assert total == 2 and len(rows) == 1

    with pytest.raises(ValidationError):
        products_service.list_products(stock="plenty")


def test_categories(db_session):
    products_service.create_category({"name": "Snacks"})
    products_service.create_category({"name": "Household", "description": "Cleaning"})

    assert [c.name for c in products_service.list_categories()] == ["Household", "Snacks"]
    with pytest.raises(ConflictError):
        products_service.create_category({"name": "Snacks"})
