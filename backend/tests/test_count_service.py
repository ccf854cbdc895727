"""
Stock count workflow tests: count sheet, submission and variance report.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import stock_of
from posledger.services import count_service
from posledger.services.ledger_service import ValidationFailed, apply_adjustment, apply_sale
from posledger.time_utils import utcnow


def _row(sheet, product_id):
    return next(r for r in sheet if r["product_id"] == product_id)


def test_sheet_reconstructs_opening_without_counts(db_session, product_a):
    apply_sale([{"product_id": product_a.id, "quantity": 3}])
    apply_adjustment(product_a.id, "ADJUSTMENT_ADD", 2, "Delivery")

    row = _row(count_service.build_count_sheet(), product_a.id)

    assert Decimal(row["opening_stock"]) == Decimal("10")
    assert Decimal(row["recorded_sales"]) == Decimal("3")
    assert Decimal(row["net_adjustments"]) == Decimal("2")
    assert Decimal(row["expected_stock"]) == Decimal("9")
    assert Decimal(row["current_stock"]) == Decimal("9")
    assert row["last_count_date"] is None


def test_sheet_starts_from_last_count(db_session, product_a):
    apply_sale([{"product_id": product_a.id, "quantity": 3}])
    count_service.submit_count({"counts": [{"product_id": product_a.id, "actual_qty": 6}]}, None)
    apply_sale([{"product_id": product_a.id, "quantity": 1}])

    row = _row(count_service.build_count_sheet(), product_a.id)

    assert Decimal(row["opening_stock"]) == Decimal("6")
    assert Decimal(row["recorded_sales"]) == Decimal("1")
    assert Decimal(row["expected_stock"]) == Decimal("5")
    assert row["last_count_date"] is not None


def test_sheet_skips_inactive_products(db_session, product_a, product_b):
    product_b.is_active = False
    db_session.commit()

    ids = [r["product_id"] for r in count_service.build_count_sheet()]
    assert ids == [product_a.id]


def test_submit_count_overwrites_stock(db_session, product_a, product_b, cashier):
    records = count_service.submit_count({
        "counts": [
            {"product_id": product_a.id, "actual_qty": 9, "expected_qty": 10, "notes": "one short"},
            {"product_id": product_b.id, "actual_qty": 2},
        ],
    }, cashier.id)

    assert [r.variance for r in records] == [Decimal("-1"), Decimal("0")]
    assert records[0].notes == "one short"
    assert stock_of(product_a.id) == Decimal("9")
    assert stock_of(product_b.id) == Decimal("2")


def test_submit_count_validates_payload(db_session, product_a):
    with pytest.raises(ValidationFailed):
        count_service.submit_count({"counts": "all of them"}, None)

    future = (utcnow() + timedelta(days=2)).isoformat()
    with pytest.raises(ValidationFailed):
        count_service.submit_count(
            {"counts": [{"product_id": product_a.id, "actual_qty": 1}], "count_date": future}, None
        )
    assert stock_of(product_a.id) == Decimal("10")


def test_list_counts_by_day(db_session, product_a):
    count_service.submit_count({"counts": [{"product_id": product_a.id, "actual_qty": 10}]}, None)

    today = utcnow().date().isoformat()
    yesterday = (utcnow() - timedelta(days=1)).date().isoformat()

    assert len(count_service.list_counts(date=today)) == 1
    assert count_service.list_counts(date=yesterday) == []
    assert len(count_service.list_counts(start=yesterday, end=today)) == 1


def test_variance_report(db_session, product_a, product_b):
    apply_sale([{"product_id": product_a.id, "quantity": 3}])
    count_service.submit_count({
        "counts": [
            {"product_id": product_a.id, "actual_qty": 6, "expected_qty": 7},
            {"product_id": product_b.id, "actual_qty": 3, "expected_qty": 2},
        ],
    }, None)

    report = count_service.variance_report(utcnow().date().isoformat())

    rows = {r["product_id"]: r for r in report["products"]}
    assert Decimal(rows[product_a.id]["variance"]) == Decimal("-1")
    assert Decimal(rows[product_a.id]["recorded_sales"]) == Decimal("3")
    assert Decimal(rows[product_a.id]["estimated_revenue"]) == Decimal("100.00")
    assert Decimal(rows[product_b.id]["variance"]) == Decimal("1")
    assert Decimal(rows[product_b.id]["unrecorded_units"]) == Decimal("0")

    summary = report["summary"]
    assert Decimal(summary["recorded_sales"]) == Decimal("300.00")
    assert summary["recorded_sales_count"] == 1
    assert Decimal(summary["unrecorded_revenue"]) == Decimal("100.00")
    assert summary["estimated_unrecorded_sales_count"] == 1
    assert Decimal(summary["total_estimated_revenue"]) == Decimal("400.00")


def test_variance_report_rejects_bad_date(db_session):
    with pytest.raises(ValidationFailed):
        count_service.variance_report("yesterday-ish")
