"""
Invoice number allocation: the three tiers and the tag each one leaves.
"""

from datetime import date

from sqlalchemy.exc import OperationalError

from stockbook.extensions import db
from stockbook.models import Invoice, InvoiceSequence
from stockbook.services import invoice_number_service
from stockbook.services.invoice_number_service import NumberSource


def _insert_invoices(*numbers):
    for number in numbers:
        db.session.add(Invoice(invoice_number=number, guest_name="Seed", invoice_date=date(2026, 1, 1)))
        db.session.flush()
    db.session.commit()


def _boom(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def test_format_and_parse():
    assert invoice_number_service.format_invoice_number("INV", 7) == "INV-0007"
    assert invoice_number_service.format_invoice_number("INV", 12345) == "INV-12345"
    assert invoice_number_service.parse_invoice_number("INV-0042", "INV") == 42
    assert invoice_number_service.parse_invoice_number("BILL-0042", "INV") is None
    assert invoice_number_service.parse_invoice_number(None, "INV") is None


def test_first_number_from_empty_store(db_session):
    allocated = invoice_number_service.allocate_invoice_number()
    db.session.commit()

    assert allocated.number == "INV-0001"
    assert allocated.source is NumberSource.SEQUENCE
    assert not allocated.degraded


def test_sequence_increments(db_session):
    first = invoice_number_service.allocate_invoice_number()
    second = invoice_number_service.allocate_invoice_number()
    db.session.commit()

    assert (first.number, second.number) == ("INV-0001", "INV-0002")
    seq = db.session.query(InvoiceSequence).filter_by(prefix="INV").one()
    assert seq.next_number == 3


def test_sequence_seeds_from_existing_invoices(db_session):
    _insert_invoices(*[f"INV-{n:04d}" for n in range(1, 10)])

    allocated = invoice_number_service.allocate_invoice_number()

    assert allocated.number == "INV-0010"
    assert allocated.source is NumberSource.SEQUENCE


def test_sequence_skips_numbers_already_taken(db_session):
    db.session.add(InvoiceSequence(prefix="INV", next_number=3))
    db.session.commit()
    _insert_invoices("INV-0003", "INV-0004")

    allocated = invoice_number_service.allocate_invoice_number()
    db.session.commit()

    assert allocated.number == "INV-0005"
    assert db.session.query(InvoiceSequence).filter_by(prefix="INV").one().next_number == 6


def test_scan_tier_when_sequence_disabled(app, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "INVOICE_SEQUENCE_ENABLED", False)
    _insert_invoices(*[f"INV-{n:04d}" for n in range(1, 10)])

    allocated = invoice_number_service.allocate_invoice_number()

    assert allocated.number == "INV-0010"
    assert allocated.source is NumberSource.SCANNED
    assert allocated.degraded
    assert "disabled" in allocated.errors[0]


def test_scan_tier_starts_at_one(app, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "INVOICE_SEQUENCE_ENABLED", False)
    assert invoice_number_service.allocate_invoice_number().number == "INV-0001"


def test_scan_ignores_foreign_formats(app, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "INVOICE_SEQUENCE_ENABLED", False)
    _insert_invoices("INV-0004", "MANUAL-77")

    # The latest invoice does not parse, so numbering restarts at 1
    allocated = invoice_number_service.allocate_invoice_number()
    assert allocated.number == "INV-0001"


def test_sequence_failure_falls_through_to_scan(db_session, monkeypatch):
    _insert_invoices("INV-0001")
    monkeypatch.setattr(invoice_number_service, "_allocate_from_sequence", _boom)

    allocated = invoice_number_service.allocate_invoice_number()

    assert allocated.number == "INV-0002"
    assert allocated.source is NumberSource.SCANNED
    assert allocated.errors[0].startswith("sequence:")


def test_timestamp_tier_when_store_unavailable(db_session, monkeypatch):
    monkeypatch.setattr(invoice_number_service, "_allocate_from_sequence", _boom)
    monkeypatch.setattr(invoice_number_service, "_allocate_from_latest_invoice", _boom)
    monkeypatch.setattr(invoice_number_service.time, "time", lambda: 1_700_000_123.25)

    allocated = invoice_number_service.allocate_invoice_number()

    assert allocated.number == "INV-3250"
    assert allocated.source is NumberSource.TIMESTAMP
    assert len(allocated.errors) == 2
    assert allocated.to_dict()["degraded"] is True


def test_timestamp_tier_skips_taken_numbers(db_session, monkeypatch):
    _insert_invoices("INV-3250")
    monkeypatch.setattr(invoice_number_service, "_allocate_from_sequence", _boom)
    monkeypatch.setattr(invoice_number_service, "_allocate_from_latest_invoice", _boom)
    monkeypatch.setattr(invoice_number_service.time, "time", lambda: 1_700_000_123.25)

    allocated = invoice_number_service.allocate_invoice_number()

    assert allocated.number == "INV-3251"
    assert allocated.source is NumberSource.TIMESTAMP


def test_timestamp_tier_unchecked_when_lookup_fails(db_session, monkeypatch):
    monkeypatch.setattr(invoice_number_service, "_number_taken", _boom)
    monkeypatch.setattr(invoice_number_service.time, "time", lambda: 1_700_000_123.25)

    allocated = invoice_number_service.allocate_invoice_number()

    assert allocated.number == "INV-3250"
    assert allocated.source is NumberSource.TIMESTAMP
    assert [e.split(":")[0] for e in allocated.errors] == ["sequence", "scan"]


def test_failed_scan_keeps_outer_transaction_usable(app, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "INVOICE_SEQUENCE_ENABLED", False)
    pending = Invoice(invoice_number="INV-0100", guest_name="Pending", invoice_date=date(2026, 1, 1))
    db.session.add(pending)
    db.session.flush()
    monkeypatch.setattr(invoice_number_service, "_latest_number", _boom)
    monkeypatch.setattr(invoice_number_service.time, "time", lambda: 1_700_000_123.25)

    allocated = invoice_number_service.allocate_invoice_number()
    db.session.commit()

    assert allocated.source is NumberSource.TIMESTAMP
    assert db.session.query(Invoice).filter_by(invoice_number="INV-0100").count() == 1




def test_custom_prefix_and_pad(app, db_session, monkeypatch):
    monkeypatch.setitem(app.config, "INVOICE_PREFIX", "BILL")
    monkeypatch.setitem(app.config, "INVOICE_NUMBER_PAD", 6)

    assert invoice_number_service.allocate_invoice_number().number == "BILL-000001"


def test_preview_does_not_consume(db_session):
    preview = invoice_number_service.preview_invoice_number()
    allocated = invoice_number_service.allocate_invoice_number()
    db.session.commit()

    assert preview.number == allocated.number == "INV-0001"
    assert invoice_number_service.preview_invoice_number().number == "INV-0002"


def test_reset_sequence_moves_past_latest(db_session):
    db.session.add(InvoiceSequence(prefix="INV", next_number=2))
    db.session.commit()
    _insert_invoices("INV-0001", "INV-0007")

    seq = invoice_number_service.reset_sequence()
    assert seq.next_number == 8
