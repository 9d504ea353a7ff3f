from __future__ import annotations

import logging
from datetime import date

import pytest

from rentcore.core.exceptions import ValidationError
from rentcore.models import (
    AuditLog,
    ContractStatus,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    Room,
    RoomStatus,
)
from rentcore.services.payment_service import PaymentService


def _service(db, today=date(2024, 2, 15)):
    return PaymentService(db, today=lambda: today)


def test_gateway_payment_is_pending_and_manual_payment_awaits_review(db, make_contract, make_invoice):
    contract = make_contract()
    invoice = make_invoice(contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7))
    service = _service(db)

    va = service.create_payment(invoice, {"method": "virtual_account"})
    transfer = service.create_payment(invoice, {"method": "transfer", "amount": 250_000, "reference": "BCA-889"})

    assert (va.status, va.provider, va.amount) == (PaymentStatus.PENDING, "midtrans", 1_500_000)
    assert (transfer.status, transfer.provider, transfer.amount) == (PaymentStatus.REVIEW, None, 250_000)
    assert db.query(AuditLog).filter(AuditLog.event == "payment_created").count() == 2


def test_payment_against_settled_invoice_is_rejected(db, make_contract, make_invoice):
    contract = make_contract()
    invoice = make_invoice(
        contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7), status=InvoiceStatus.PAID
    )

    with pytest.raises(ValidationError):
        _service(db).create_payment(invoice, {"method": "transfer"})


def test_unknown_method_is_rejected(db, make_contract, make_invoice):
    contract = make_contract()
    invoice = make_invoice(contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7))

    with pytest.raises(ValidationError):
        _service(db).create_payment(invoice, {"method": "barter"})


def test_void_by_provider_leaves_manual_payments(db, make_contract, make_invoice, make_payment):
    contract = make_contract()
    invoice = make_invoice(contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7))
    va = make_payment(invoice)
    manual = make_payment(invoice, method=PaymentMethod.TRANSFER, status=PaymentStatus.REVIEW, provider=None)

    voided = _service(db).void_pending_payments_for_invoice(invoice, provider="midtrans", reason="new_va")

    assert voided == 1
    assert va.status == PaymentStatus.CANCELLED
    assert va.meta["void_reason"] == "new_va"
    assert manual.status == PaymentStatus.REVIEW


def test_approving_review_resolves_overdue_contract(db, make_contract, make_invoice, make_payment):
    contract = make_contract(status=ContractStatus.OVERDUE, start=date(2024, 1, 1), duration_count=3)
    invoice = make_invoice(
        contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7), status=InvoiceStatus.OVERDUE
    )
    payment = make_payment(invoice, method=PaymentMethod.TRANSFER, status=PaymentStatus.REVIEW, provider=None)

    _service(db).review_payment(payment, approve=True, user_id=3)
    db.commit()

    assert payment.status == PaymentStatus.COMPLETED
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.outstanding_amount == 0
    assert contract.status == ContractStatus.ACTIVE
    assert db.get(Room, contract.room_id).status == RoomStatus.OCCUPIED


def test_rejected_review_leaves_invoice_outstanding(db, make_contract, make_invoice, make_payment):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 1), duration_count=3)
    invoice = make_invoice(contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7))
    payment = make_payment(invoice, method=PaymentMethod.TRANSFER, status=PaymentStatus.REVIEW, provider=None)

    _service(db).review_payment(payment, approve=False)

    assert payment.status == PaymentStatus.REJECTED
    assert invoice.status == InvoiceStatus.OVERDUE
    with pytest.raises(ValidationError):
        _service(db).review_payment(payment, approve=True)


def test_partial_payment_keeps_invoice_open(db, make_contract, make_invoice, make_payment):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 1), duration_count=3)
    invoice = make_invoice(contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 20))
    make_payment(invoice, amount=600_000, status=PaymentStatus.COMPLETED)

    _service(db).recalculate_invoice(invoice)

    assert invoice.status == InvoiceStatus.PENDING
    assert invoice.outstanding_amount == 900_000
    assert invoice.paid_at is None


def test_overpayment_settles_and_is_audited(db, make_contract, make_invoice, make_payment, caplog):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 1), duration_count=3)
    invoice = make_invoice(contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 20))
    make_payment(invoice, amount=1_000_000, status=PaymentStatus.COMPLETED)
    make_payment(invoice, amount=1_000_000, status=PaymentStatus.COMPLETED)

    with caplog.at_level(logging.WARNING):
        _service(db).recalculate_invoice(invoice)
    db.commit()

    assert invoice.status == InvoiceStatus.PAID
    assert invoice.outstanding_amount == 0
    assert any(record.getMessage() == "invoice.overpaid" for record in caplog.records)
    audit = db.query(AuditLog).filter(AuditLog.event == "invoice_overpaid").one()
    assert audit.properties["excess"] == 500_000


def test_cancelled_invoice_is_never_recalculated(db, make_contract, make_invoice, make_payment):
    contract = make_contract()
    invoice = make_invoice(
        contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7), status=InvoiceStatus.CANCELLED
    )
    make_payment(invoice, status=PaymentStatus.COMPLETED)

    _service(db).recalculate_invoice(invoice)

    assert invoice.status == InvoiceStatus.CANCELLED
