from decimal import Decimal

import pytest

from stockbook.errors import NotFoundError, ValidationError
from stockbook.extensions import db
from stockbook.services import balance_service, inventory_service


def test_running_balances_carry_opening_and_closing(product_a):
    inventory_service.record_purchase(product_id=product_a.id, quantity=5)
    inventory_service.record_sale(product_id=product_a.id, quantity=3)
    inventory_service.record_adjustment(product_id=product_a.id, quantity_delta=-2)

    points = balance_service.product_register(product_a.id)

    assert [(p.opening, p.closing) for p in points] == [
        (Decimal("10"), Decimal("15")),
        (Decimal("15"), Decimal("12")),
        (Decimal("12"), Decimal("10")),
    ]
    data = points[-1].to_dict()
    assert data["closing_stock"] == Decimal("10")
    assert data["transaction_type"] == "adjustment"


def test_running_balances_without_entries():
    assert balance_service.running_balances([], opening_balance=7) == []


def test_cached_and_replayed_balances_agree(product_a):
    inventory_service.record_purchase(product_id=product_a.id, quantity="2.5")
    inventory_service.record_sale(product_id=product_a.id, quantity=4)

    cached = balance_service.current_balance(product_a.id)
    replayed = balance_service.current_balance(product_a.id, mode="replay")

    assert cached == replayed == Decimal("8.5")
    assert balance_service.check_product(product_a.id).ok
    assert balance_service.find_drift() == []


def test_unknown_mode_is_rejected(product_a):
    with pytest.raises(ValidationError):
        balance_service.current_balance(product_a.id, mode="guess")


def test_missing_product(db_session):
    with pytest.raises(NotFoundError):
        balance_service.replay_balance(404)


def test_drift_detection_and_rebuild(product_a, make_product):
    other = make_product(stock=3)
    inventory_service.record_purchase(product_id=product_a.id, quantity=5)

    # Corrupt the cached counter behind the ledger's back
    product_a.current_stock = Decimal("99")
    db.session.commit()

    drifted = balance_service.find_drift()
    assert [c.product_id for c in drifted] == [product_a.id]
    assert drifted[0].drift == Decimal("84")

    before = balance_service.rebuild_cached_balance(product_a.id)
    assert before.cached == Decimal("99")
    assert before.replayed == Decimal("15")

    assert product_a.current_stock == Decimal("15")
    assert balance_service.find_drift() == []
    assert balance_service.check_product(other.id).ok
