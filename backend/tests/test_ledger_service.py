"""
Stock ledger tests: append semantics, sign convention, stock sufficiency
and the cached counter.
"""

from decimal import Decimal

import pytest

from stockbook.errors import InsufficientStockError, NotFoundError, ValidationError
from stockbook.extensions import db
from stockbook.models import StockLedgerEntry
from stockbook.services import inventory_service, ledger_service


def _ledger_count():
    return db.session.query(StockLedgerEntry).count()


def test_append_moves_cached_stock(product_a):
    entry = ledger_service.append(
        product_id=product_a.id,
        transaction_type=ledger_service.TX_PURCHASE,
        quantity_delta=5,
        reference_no="PO-1",
    )
    db.session.commit()

    assert entry.quantity_delta == Decimal("5")
    assert product_a.current_stock == Decimal("15")


@pytest.mark.parametrize(
    "tx_type,delta",
    [
        ("purchase", -1),
        ("return", -3),
        ("sale", 2),
        ("adjustment", 0),
        ("transfer", 1),
    ],
)
def test_append_rejects_bad_entries(product_a, tx_type, delta):
    with pytest.raises(ValidationError):
        ledger_service.append(product_id=product_a.id, transaction_type=tx_type, quantity_delta=delta)
    db.session.rollback()
    assert _ledger_count() == 0


def test_append_unknown_product(db_session):
    with pytest.raises(ValidationError):
        ledger_service.append(product_id=9999, transaction_type="purchase", quantity_delta=1)


def test_sale_beyond_stock_is_rejected_and_writes_nothing(product_a):
    with pytest.raises(InsufficientStockError) as excinfo:
        ledger_service.append_if_sufficient_stock(
            product_id=product_a.id,
            transaction_type=ledger_service.TX_SALE,
            quantity_delta=-11,
        )
    db.session.rollback()

    shortage = excinfo.value.shortages[0]
    assert shortage["product_name"] == "Product A"
    assert shortage["requested"] == Decimal("11")
    assert shortage["available"] == Decimal("10")
    assert "Product A: Requested 11" in str(excinfo.value)
    assert _ledger_count() == 0
    assert product_a.current_stock == Decimal("10")


def test_sale_down_to_zero_is_allowed(product_a):
    ledger_service.append_if_sufficient_stock(
        product_id=product_a.id,
        transaction_type=ledger_service.TX_SALE,
        quantity_delta=-10,
    )
    db.session.commit()
    assert product_a.current_stock == Decimal("0")


def test_positive_adjustment_skips_stock_check(make_product):
    empty = make_product(stock=0)
    ledger_service.append_if_sufficient_stock(
        product_id=empty.id,
        transaction_type=ledger_service.TX_ADJUSTMENT,
        quantity_delta=4,
    )
    db.session.commit()
    assert empty.current_stock == Decimal("4")


def test_list_for_product_is_oldest_first(product_a):
    inventory_service.record_purchase(product_id=product_a.id, quantity=2, reference_no="first")
    inventory_service.record_sale(product_id=product_a.id, quantity=1, reference_no="second")
    inventory_service.record_adjustment(product_id=product_a.id, quantity_delta=-1, reference_no="third")

    refs = [e.reference_no for e in ledger_service.list_for_product(product_a.id)]
    assert refs == ["first", "second", "third"]


def test_list_for_missing_product(db_session):
    with pytest.raises(NotFoundError):
        ledger_service.list_for_product(12345)


def test_list_entries_filters_and_orders_newest_first(product_a):
    inventory_service.record_purchase(product_id=product_a.id, quantity=1, reference_no="PO-1")
    inventory_service.record_purchase(product_id=product_a.id, quantity=1, reference_no="PO-2")
    inventory_service.record_return(product_id=product_a.id, quantity=1, reference_no="RET-1")

    purchases = ledger_service.list_entries(transaction_type="purchase")
    assert [e.reference_no for e in purchases] == ["PO-2", "PO-1"]

    by_ref = ledger_service.list_entries(reference_no="RET-1")
    assert len(by_ref) == 1
    assert by_ref[0].transaction_type == "return"


def test_record_adjustment_cannot_overdraw(product_a):
    with pytest.raises(InsufficientStockError):
        inventory_service.record_adjustment(product_id=product_a.id, quantity_delta=-20)
    db.session.rollback()
    assert product_a.current_stock == Decimal("10")


def test_record_purchase_rejects_non_positive_quantity(product_a):
    with pytest.raises(ValidationError):
        inventory_service.record_purchase(product_id=product_a.id, quantity=0)
    with pytest.raises(ValidationError):
        inventory_service.record_purchase(product_id=product_a.id, quantity=2, unit_cost=-1)


def test_fractional_quantities(make_product):
    rope = make_product("ROPE", stock="2.5")
    inventory_service.record_sale(product_id=rope.id, quantity="0.75")
    assert rope.current_stock == Decimal("1.750")


@pytest.mark.parametrize(
    "kwargs,message",
    [
        ({"quantity": "1e30"}, "quantity is out of range"),
        ({"quantity": "1e12"}, "quantity cannot exceed"),
        ({"quantity": 1, "unit_cost": "1e11"}, "unit_cost cannot exceed"),
    ],
)
def test_record_purchase_rejects_oversized_numbers(product_a, kwargs, message):
    with pytest.raises(ValidationError) as excinfo:
        inventory_service.record_purchase(product_id=product_a.id, **kwargs)

    assert message in str(excinfo.value)
    assert _ledger_count() == 0


def test_append_rejects_oversized_delta(product_a):
    with pytest.raises(ValidationError):
        ledger_service.append(
            product_id=product_a.id,
            transaction_type=ledger_service.TX_ADJUSTMENT,
            quantity_delta="1e12",
        )


def test_purchase_retries_after_losing_a_stock_race(product_a, monkeypatch):
    from sqlalchemy.orm.exc import StaleDataError

    from stockbook.services import concurrency

    real_append = ledger_service.append
    calls = []

    def _racy_append(**kwargs):
        calls.append(kwargs["quantity_delta"])
        if len(calls) == 1:
            raise StaleDataError("version_id moved")
        return real_append(**kwargs)

    monkeypatch.setattr(ledger_service, "append", _racy_append)
    monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)

    inventory_service.record_purchase(product_id=product_a.id, quantity=5)

    assert calls == [Decimal("5"), Decimal("5")]
    assert _ledger_count() == 1
    assert product_a.current_stock == Decimal("15")


def test_retry_gives_up_after_attempts(db_session, monkeypatch):
    from sqlalchemy.exc import OperationalError

    from stockbook.services import concurrency

    monkeypatch.setattr(concurrency.time, "sleep", lambda seconds: None)
    attempts = []

    def _locked():
        attempts.append(1)
        raise OperationalError("UPDATE products", {}, Exception("database is locked"))

    with pytest.raises(OperationalError):
        concurrency.retry_stock_write("sale product_id=1", _locked, attempts=3)
    assert len(attempts) == 3
