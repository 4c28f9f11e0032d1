"""
Property-based tests for the stock and tax invariants.

Each example starts from an empty database; the session-scoped ``app``
fixture is used directly so Hypothesis can re-run the body freely.
"""

from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from stockbook.errors import InsufficientStockError
from stockbook.extensions import db
from stockbook.money_utils import quantize_money
from stockbook.services import (
    balance_service,
    invoice_number_service,
    invoice_service,
    inventory_service,
    products_service,
    tax_service,
)

DB_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

quantities = st.integers(min_value=1, max_value=15)
tax_rates = st.sampled_from([Decimal("0"), Decimal("5"), Decimal("12"), Decimal("18"), Decimal("28")])
prices = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("99999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
movements = st.lists(
    st.tuples(st.sampled_from(["purchase", "sale", "adjustment", "return"]), st.integers(min_value=-20, max_value=20)),
    max_size=15,
)


def _reset():
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


def _product(stock, sku="P-1"):
    return products_service.create_product(patch={
        "sku": sku,
        "name": f"Product {sku}",
        "unit_price": Decimal("118.00"),
        "tax_rate": Decimal("18"),
        "opening_stock": Decimal(stock),
    })


def _apply(product_id, kind, amount):
    if kind == "purchase" and amount > 0:
        inventory_service.record_purchase(product_id=product_id, quantity=amount)
    elif kind == "return" and amount > 0:
        inventory_service.record_return(product_id=product_id, quantity=amount)
    elif kind == "sale" and amount > 0:
        inventory_service.record_sale(product_id=product_id, quantity=amount)
    elif kind == "adjustment" and amount != 0:
        inventory_service.record_adjustment(product_id=product_id, quantity_delta=amount)


@DB_SETTINGS
@given(opening=st.integers(min_value=0, max_value=30), ops=movements)
def test_cached_stock_equals_opening_plus_ledger(app, opening, ops):
    _reset()
    product = _product(opening)

    for kind, amount in ops:
        try:
            _apply(product.id, kind, amount)
        except InsufficientStockError:
            db.session.rollback()
        assert product.current_stock >= 0

    replayed = balance_service.replay_balance(product.id)
    assert product.current_stock == replayed
    assert balance_service.find_drift() == []


@given(unit_price=prices, tax_rate=tax_rates, quantity=quantities)
def test_rounded_line_tax_adds_up(unit_price, tax_rate, quantity):
    line = tax_service.compute_line(unit_price, tax_rate, quantity).rounded()

    assert line.line_total == quantize_money(unit_price * quantity)
    assert line.taxable_value + line.tax_amount == line.line_total
    assert line.cgst + line.sgst == line.tax_amount
    assert abs(line.cgst - line.sgst) <= Decimal("0.01")
    assert line.tax_amount >= 0


@given(lines=st.lists(st.tuples(prices, tax_rates, quantities), min_size=1, max_size=6))
def test_invoice_totals_are_line_sums(lines):
    taxes = [tax_service.compute_line(p, r, q).rounded() for p, r, q in lines]
    totals = tax_service.compute_totals(taxes)

    assert totals.subtotal == sum(t.taxable_value for t in taxes)
    assert totals.tax_amount == sum(t.tax_amount for t in taxes)
    assert totals.total_amount == totals.subtotal + totals.tax_amount


@DB_SETTINGS
@given(first=quantities, edits=st.lists(quantities, max_size=5))
def test_edits_and_delete_return_stock_to_opening(app, first, edits):
    _reset()
    opening = 20
    product = _product(opening)

    def _items(qty):
        return [{"product_id": product.id, "quantity": qty}]

    created = invoice_service.create_invoice(
        patch={"guest_name": "Walk-in", "items": _items(first)}, notify=False
    )
    invoice_id = created.invoice.id
    assert product.current_stock == opening - first

    for qty in edits:
        invoice_service.update_invoice(invoice_id=invoice_id, patch={"items": _items(qty)})
        assert product.current_stock == opening - qty

    # Resubmitting the current items changes nothing
    current = edits[-1] if edits else first
    again = invoice_service.update_invoice(invoice_id=invoice_id, patch={"items": _items(current)})
    assert again.ledger_entries == []

    invoice_service.delete_invoice(invoice_id=invoice_id)
    assert product.current_stock == opening
    assert balance_service.replay_balance(product.id) == opening


@DB_SETTINGS
@given(count=st.integers(min_value=1, max_value=6), use_sequence=st.booleans())
def test_numbers_strictly_increase(app, count, use_sequence):
    _reset()
    app.config["INVOICE_SEQUENCE_ENABLED"] = use_sequence
    try:
        numbers = []
        for _ in range(count):
            result = invoice_service.create_invoice(
                patch={"guest_name": "A", "items": [{"description": "Service", "quantity": 1, "unit_price": 10}]},
                notify=False,
            )
            numbers.append(invoice_number_service.parse_invoice_number(result.invoice.invoice_number, "INV"))
    finally:
        app.config["INVOICE_SEQUENCE_ENABLED"] = True

    assert numbers == list(range(1, count + 1))
