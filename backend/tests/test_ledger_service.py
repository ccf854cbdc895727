"""
Stock ledger tests.

Verifies:
- Stock never goes negative under the default policy
- Multi-line sales are all-or-nothing
- Adjustments apply the sign implied by their type and write one audit row
- Counts overwrite stock and record variance against the caller's expected figure
- Storage failures and timeouts roll back both stock and audit rows
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from conftest import make_product, stock_of
from posledger.models import Sale, SaleLine, StockAdjustment, StockCount
from posledger.services import ledger_service
from posledger.services.ledger_service import (
    InsufficientStock,
    PersistenceFailure,
    ProductNotFound,
    ValidationFailed,
    apply_adjustment,
    apply_count,
    apply_sale,
    get_product_stock,
)


def _boom(*args, **kwargs):
    raise OperationalError("UPDATE products SET current_stock=?", {}, Exception("disk I/O error"))


# =============================================================================
# SALES
# =============================================================================


class TestApplySale:

    def test_sale_decrements_stock_and_records_lines(self, db_session, product_a, owner):
        sale = apply_sale([{"product_id": product_a.id, "quantity": 3}], user_id=owner.id)

        assert stock_of(product_a.id) == Decimal("7")
        assert sale.sale_number.startswith("SALE-")
        assert len(sale.items) == 1
        line = sale.items[0]
        assert line.quantity == Decimal("3")
        assert line.unit_price == Decimal("100.00")
        assert line.subtotal == Decimal("300.00")
        assert line.previous_stock == Decimal("10")
        assert line.new_stock == Decimal("7")
        assert sale.total == Decimal("300.00")
        assert sale.user_id == owner.id

    def test_insufficient_stock_is_rejected_and_stock_unchanged(self, db_session, product_b):
        with pytest.raises(InsufficientStock) as excinfo:
            apply_sale([{"product_id": product_b.id, "quantity": 3}])

        err = excinfo.value
        assert err.available == Decimal("2")
        assert err.requested == Decimal("3")
        assert err.details["product_name"] == "Product B"
        assert stock_of(product_b.id) == Decimal("2")
        assert db_session.query(Sale).count() == 0

    def test_multi_line_sale_is_all_or_nothing(self, db_session, product_a, product_b):
        with pytest.raises(InsufficientStock) as excinfo:
            apply_sale([
                {"product_id": product_a.id, "quantity": 5},
                {"product_id": product_b.id, "quantity": 5},
            ])

        assert excinfo.value.product_id == product_b.id
        assert stock_of(product_a.id) == Decimal("10")
        assert stock_of(product_b.id) == Decimal("2")
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0

    def test_every_short_line_is_reported(self, db_session, product_a, product_b):
        with pytest.raises(InsufficientStock) as excinfo:
            apply_sale([
                {"product_id": product_a.id, "quantity": 11},
                {"product_id": product_b.id, "quantity": 3},
            ])

        shorts = {item["product_id"] for item in excinfo.value.details["items"]}
        assert shorts == {product_a.id, product_b.id}
        messages = {item["product_id"]: item["message"] for item in excinfo.value.details["items"]}
        assert messages[product_b.id].startswith("Only 2")

    def test_repeated_product_is_checked_in_aggregate(self, db_session, product_a):
        with pytest.raises(InsufficientStock):
            apply_sale([
                {"product_id": product_a.id, "quantity": 6},
                {"product_id": product_a.id, "quantity": 6},
            ])
        assert stock_of(product_a.id) == Decimal("10")

    def test_negative_stock_allowed_when_configured(self, app, db_session, product_b, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_STOCK", True)

        apply_sale([{"product_id": product_b.id, "quantity": 5}])

        assert stock_of(product_b.id) == Decimal("-3")

    def test_unknown_product(self, db_session, product_a):
        with pytest.raises(ProductNotFound) as excinfo:
            apply_sale([
                {"product_id": product_a.id, "quantity": 1},
                {"product_id": 9999, "quantity": 1},
            ])
        assert excinfo.value.status_code == 404
        assert stock_of(product_a.id) == Decimal("10")

    @pytest.mark.parametrize("quantity", [0, -1, "abc", True, None, float("nan")])
    def test_invalid_quantity(self, db_session, product_a, quantity):
        with pytest.raises(ValidationFailed) as excinfo:
            apply_sale([{"product_id": product_a.id, "quantity": quantity}])
        assert "items[0].quantity" in excinfo.value.details["fields"]

    def test_empty_sale(self, db_session):
        with pytest.raises(ValidationFailed):
            apply_sale([])

    def test_unknown_payment_method(self, db_session, product_a):
        with pytest.raises(ValidationFailed):
            apply_sale([{"product_id": product_a.id, "quantity": 1}], payment_method="CHEQUE")

    def test_inactive_product_cannot_be_sold(self, db_session, product_a):
        product_a.is_active = False
        db_session.commit()

        with pytest.raises(ValidationFailed):
            apply_sale([{"product_id": product_a.id, "quantity": 1}])
        assert stock_of(product_a.id) == Decimal("10")

    def test_totals_with_tax_and_discount(self, db_session, product_a, product_b):
        sale = apply_sale(
            [
                {"product_id": product_a.id, "quantity": 2},
                {"product_id": product_b.id, "quantity": 1, "unit_price": "45.50"},
            ],
            payment_method="MOBILE_MONEY",
            tax_rate="0.16",
            discount="10",
            amount_paid="300",
        )

        assert sale.subtotal == Decimal("245.50")
        assert sale.tax == Decimal("39.28")
        assert sale.discount == Decimal("10.00")
        assert sale.total == Decimal("274.78")
        assert sale.total == sum(line.subtotal for line in sale.items) + sale.tax - sale.discount
        assert sale.change == Decimal("25.22")

    def test_amount_paid_below_total(self, db_session, product_a):
        with pytest.raises(ValidationFailed):
            apply_sale([{"product_id": product_a.id, "quantity": 1}], amount_paid="99.99")
        assert stock_of(product_a.id) == Decimal("10")

    def test_fractional_quantities(self, db_session):
        product = make_product("KG-1", "Rice", "2.500")

        apply_sale([{"product_id": product.id, "quantity": "0.750"}])

        assert stock_of(product.id) == Decimal("1.750")

    def test_fractional_lines_sum_to_sale_subtotal(self, db_session):
        products = [make_product(f"LOOSE-{n}", f"Loose item {n}", 5, selling="1.00", cost="0.50") for n in range(3)]

        sale = apply_sale(
            [{"product_id": p.id, "quantity": "0.333"} for p in products],
            tax_rate="0.16",
        )

        assert [line.subtotal for line in sale.items] == [Decimal("0.33")] * 3
        assert sale.subtotal == Decimal("0.99")
        assert sale.subtotal == sum(line.subtotal for line in sale.items)
        assert sale.tax == Decimal("0.16")
        assert sale.total == sum(line.subtotal for line in sale.items) + sale.tax - sale.discount
        assert sale.change == Decimal("0.00")

    @pytest.mark.parametrize("quantity", ["1.2345", "0.0001", 0.3335])
    def test_over_precise_quantity_rejected(self, db_session, product_a, quantity):
        with pytest.raises(ValidationFailed) as excinfo:
            apply_sale([{"product_id": product_a.id, "quantity": quantity}])

        assert excinfo.value.fields == {"items[0].quantity": "allows at most 3 decimal places"}
        assert stock_of(product_a.id) == Decimal("10")


# =============================================================================
# ADJUSTMENTS
# =============================================================================


class TestApplyAdjustment:

    def test_add_increases_stock_with_one_record(self, db_session, owner):
        product = make_product("ADJ-20", "Twenty", 20)

        adjustment = apply_adjustment(product.id, "ADJUSTMENT_ADD", 5, "Delivery", user_id=owner.id)

        assert stock_of(product.id) == Decimal("25")
        records = db_session.query(StockAdjustment).all()
        assert len(records) == 1
        assert records[0].id == adjustment.id
        assert records[0].type == "ADJUSTMENT_ADD"
        assert records[0].quantity == Decimal("5")
        assert records[0].quantity_delta == Decimal("5")
        assert records[0].previous_stock == Decimal("20")
        assert records[0].new_stock == Decimal("25")

    @pytest.mark.parametrize("adjustment_type", ["ADJUSTMENT_REMOVE", "DAMAGE", "THEFT", "EXPIRY"])
    def test_removal_types_decrement(self, db_session, product_a, adjustment_type):
        adjustment = apply_adjustment(product_a.id, adjustment_type, 4, "Shelf check")

        assert stock_of(product_a.id) == Decimal("6")
        assert adjustment.quantity_delta == Decimal("-4")

    @pytest.mark.parametrize("adjustment_type", ["ADJUSTMENT_ADD", "RETURN", "CORRECTION", "SAMPLE"])
    def test_other_types_increment(self, db_session, product_a, adjustment_type):
        apply_adjustment(product_a.id, adjustment_type, 4, "Shelf check")

        assert stock_of(product_a.id) == Decimal("14")

    def test_removal_beyond_stock_is_rejected(self, db_session, product_b):
        with pytest.raises(InsufficientStock):
            apply_adjustment(product_b.id, "DAMAGE", 3, "Broken bottles")

        assert stock_of(product_b.id) == Decimal("2")
        assert db_session.query(StockAdjustment).count() == 0

    def test_round_trip(self, db_session, product_a):
        apply_adjustment(product_a.id, "ADJUSTMENT_ADD", "7.5", "Found stock")
        apply_adjustment(product_a.id, "ADJUSTMENT_REMOVE", "7.5", "Miscount")

        assert stock_of(product_a.id) == Decimal("10")
        assert db_session.query(StockAdjustment).count() == 2

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reason_required(self, db_session, product_a, reason):
        with pytest.raises(ValidationFailed) as excinfo:
            apply_adjustment(product_a.id, "ADJUSTMENT_ADD", 1, reason)
        assert "reason" in excinfo.value.details["fields"]

    def test_unknown_type(self, db_session, product_a):
        with pytest.raises(ValidationFailed):
            apply_adjustment(product_a.id, "GIFT", 1, "Promo")

    def test_quantity_must_be_positive(self, db_session, product_a):
        with pytest.raises(ValidationFailed):
            apply_adjustment(product_a.id, "ADJUSTMENT_ADD", 0, "Nothing")

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFound):
            apply_adjustment(4242, "ADJUSTMENT_ADD", 1, "Delivery")


# =============================================================================
# COUNTS
# =============================================================================


class TestApplyCount:

    def test_count_overwrites_stock(self, db_session, owner):
        product = make_product("CNT-20", "Counted", 20)

        records = apply_count(
            [{"product_id": product.id, "actual_qty": 15, "expected_qty": 18}],
            user_id=owner.id,
        )

        assert stock_of(product.id) == Decimal("15")
        assert len(records) == 1
        record = records[0]
        assert record.expected_qty == Decimal("18")
        assert record.actual_qty == Decimal("15")
        assert record.variance == Decimal("-3")
        assert record.previous_stock == Decimal("20")

    def test_expected_defaults_to_stored_stock(self, db_session, product_a):
        records = apply_count([{"product_id": product_a.id, "actual_qty": 12}])

        assert records[0].expected_qty == Decimal("10")
        assert records[0].variance == Decimal("2")
        assert stock_of(product_a.id) == Decimal("12")

    def test_batch_is_atomic(self, db_session, product_a, product_b):
        with pytest.raises(ProductNotFound):
            apply_count([
                {"product_id": product_a.id, "actual_qty": 1},
                {"product_id": 9999, "actual_qty": 1},
            ])

        assert stock_of(product_a.id) == Decimal("10")
        assert db_session.query(StockCount).count() == 0

    def test_duplicate_product_rejected(self, db_session, product_a):
        with pytest.raises(ValidationFailed):
            apply_count([
                {"product_id": product_a.id, "actual_qty": 1},
                {"product_id": product_a.id, "actual_qty": 2},
            ])

    def test_zero_count_allowed_negative_rejected(self, db_session, product_a, product_b):
        apply_count([{"product_id": product_a.id, "actual_qty": 0}])
        assert stock_of(product_a.id) == Decimal("0")

        with pytest.raises(ValidationFailed):
            apply_count([{"product_id": product_b.id, "actual_qty": -1}])
        assert stock_of(product_b.id) == Decimal("2")

    def test_over_precise_counts_rejected(self, db_session, product_a):
        with pytest.raises(ValidationFailed):
            apply_count([{"product_id": product_a.id, "actual_qty": "9.9999"}])
        with pytest.raises(ValidationFailed):
            apply_count([{"product_id": product_a.id, "actual_qty": 9, "expected_qty": "10.0005"}])

        assert stock_of(product_a.id) == Decimal("10")
        assert db_session.query(StockCount).count() == 0


# =============================================================================
# FAILURE AND ROLLBACK
# =============================================================================


class TestPersistenceFailure:

    @pytest.fixture(autouse=True)
    def single_attempt(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "LEDGER_RETRY_ATTEMPTS", 1)

    def test_sale_failure_during_stock_write_rolls_back(self, db_session, product_a, monkeypatch):
        monkeypatch.setattr(ledger_service, "set_product_stock", _boom)

        with pytest.raises(PersistenceFailure) as excinfo:
            apply_sale([{"product_id": product_a.id, "quantity": 1}])

        assert excinfo.value.status_code == 500
        assert excinfo.value.details["reason"] == "OperationalError"
        assert stock_of(product_a.id) == Decimal("10")
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleLine).count() == 0

    def test_adjustment_failure_rolls_back(self, db_session, product_a, monkeypatch):
        monkeypatch.setattr(ledger_service, "set_product_stock", _boom)

        with pytest.raises(PersistenceFailure):
            apply_adjustment(product_a.id, "ADJUSTMENT_ADD", 5, "Delivery")

        assert stock_of(product_a.id) == Decimal("10")
        assert db_session.query(StockAdjustment).count() == 0

    def test_count_failure_partway_rolls_back_whole_batch(self, db_session, product_a, product_b, monkeypatch):
        real_write = ledger_service.set_product_stock
        calls = []

        def fail_second(product, new_stock):
            calls.append(product.id)
            if len(calls) == 2:
                _boom()
            real_write(product, new_stock)

        monkeypatch.setattr(ledger_service, "set_product_stock", fail_second)

        with pytest.raises(PersistenceFailure):
            apply_count([
                {"product_id": product_a.id, "actual_qty": 1},
                {"product_id": product_b.id, "actual_qty": 1},
            ])

        assert stock_of(product_a.id) == Decimal("10")
        assert stock_of(product_b.id) == Decimal("2")
        assert db_session.query(StockCount).count() == 0

    def test_transaction_deadline_rolls_back(self, app, db_session, product_a, monkeypatch):
        monkeypatch.setitem(app.config, "LEDGER_TRANSACTION_TIMEOUT_SECONDS", -1)

        with pytest.raises(PersistenceFailure) as excinfo:
            apply_sale([{"product_id": product_a.id, "quantity": 1}])

        assert excinfo.value.details["reason"] == "TransactionTimeout"
        assert stock_of(product_a.id) == Decimal("10")
        assert db_session.query(Sale).count() == 0

    def test_lock_conflict_is_retried(self, app, db_session, product_a, monkeypatch):
        monkeypatch.setitem(app.config, "LEDGER_RETRY_ATTEMPTS", 3)
        real_write = ledger_service.set_product_stock
        calls = []

        def flaky(product, new_stock):
            calls.append(product.id)
            if len(calls) == 1:
                _boom()
            real_write(product, new_stock)

        monkeypatch.setattr(ledger_service, "set_product_stock", flaky)

        sale = apply_sale([{"product_id": product_a.id, "quantity": 2}])

        assert len(calls) == 2
        assert stock_of(product_a.id) == Decimal("8")
        assert db_session.query(Sale).count() == 1
        assert sale.items[0].previous_stock == Decimal("10")


def test_get_product_stock(db_session, product_a):
    stock = get_product_stock(product_a.id)
    assert stock.current_stock == Decimal("10")
    assert stock.name == "Product A"
    assert stock.unit == "pcs"

    with pytest.raises(ProductNotFound):
        get_product_stock(123456)
