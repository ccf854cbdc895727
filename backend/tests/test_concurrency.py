"""
Concurrency tests for the stock ledger.

Runs real threads against a file-backed SQLite database so each thread has
its own connection and the database write lock is actually contended.
"""

import os
import sqlite3
import tempfile
import threading
import time
from decimal import Decimal

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import Product, Sale, StockAdjustment
from posledger.services.ledger_service import InsufficientStock, PersistenceFailure, apply_adjustment, apply_sale


@pytest.fixture
def file_app():
    tmpdir = tempfile.TemporaryDirectory()
    db_path = os.path.join(tmpdir.name, "concurrency.db")
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "LEDGER_LOCK_WAIT_SECONDS": 10,
        "LEDGER_RETRY_ATTEMPTS": 5,
    })

    with app.app_context():
        db.drop_all()
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()
    tmpdir.cleanup()


def _seed_product(app, stock) -> int:
    with app.app_context():
        product = Product(
            sku="CONCUR-1",
            name="Concurrent Product",
            unit="pcs",
            cost_price=Decimal("5.00"),
            selling_price=Decimal("10.00"),
            current_stock=Decimal(stock),
        )
        db.session.add(product)
        db.session.commit()
        return product.id


def _run_threads(app, workers):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(workers))

    def runner(work):
        with app.app_context():
            try:
                barrier.wait()
                work()
                with lock:
                    results.append("ok")
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=runner, args=(w,)) for w in workers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def _stock(app, product_id) -> Decimal:
    with app.app_context():
        return db.session.get(Product, product_id).current_stock


def test_two_sales_for_all_remaining_stock(file_app):
    product_id = _seed_product(file_app, 5)

    def sell():
        apply_sale([{"product_id": product_id, "quantity": 5}])

    results = _run_threads(file_app, [sell, sell])

    assert results.count("ok") == 1
    failures = [r for r in results if r != "ok"]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStock)
    assert _stock(file_app, product_id) == Decimal("0")
    with file_app.app_context():
        assert db.session.query(Sale).count() == 1


def test_many_single_unit_sales_never_oversell(file_app):
    product_id = _seed_product(file_app, 5)

    def sell():
        apply_sale([{"product_id": product_id, "quantity": 1}])

    results = _run_threads(file_app, [sell] * 8)

    assert results.count("ok") == 5
    assert all(isinstance(r, InsufficientStock) for r in results if r != "ok")
    assert _stock(file_app, product_id) == Decimal("0")


def test_interleaved_sales_and_adjustments_lose_no_updates(file_app):
    product_id = _seed_product(file_app, 10)

    def sell():
        apply_sale([{"product_id": product_id, "quantity": 1}])

    def restock():
        apply_adjustment(product_id, "ADJUSTMENT_ADD", 1, "Restock")

    results = _run_threads(file_app, [sell, restock] * 4)

    assert results == ["ok"] * 8
    assert _stock(file_app, product_id) == Decimal("10")
    with file_app.app_context():
        assert db.session.query(StockAdjustment).count() == 4
        assert db.session.query(Sale).count() == 4


def test_held_write_lock_fails_within_transaction_timeout(file_app, monkeypatch):
    product_id = _seed_product(file_app, 5)
    monkeypatch.setitem(file_app.config, "LEDGER_LOCK_WAIT_SECONDS", 1)
    monkeypatch.setitem(file_app.config, "LEDGER_TRANSACTION_TIMEOUT_SECONDS", 1)

    db_path = file_app.config["SQLALCHEMY_DATABASE_URI"].replace("sqlite:///", "", 1)
    holder = sqlite3.connect(db_path, isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    try:
        with file_app.app_context():
            started = time.monotonic()
            with pytest.raises(PersistenceFailure) as excinfo:
                apply_adjustment(product_id, "ADJUSTMENT_ADD", 1, "Restock")
            elapsed = time.monotonic() - started
            db.session.remove()
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    # Five attempts are configured; none may start once the timeout has passed.
    assert elapsed < 2
    assert excinfo.value.details["reason"] == "OperationalError"
    assert _stock(file_app, product_id) == Decimal("5")
    with file_app.app_context():
        assert db.session.query(StockAdjustment).count() == 0
