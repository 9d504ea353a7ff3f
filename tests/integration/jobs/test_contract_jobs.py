from __future__ import annotations

import logging
from datetime import date

from rentcore.core.outcomes import APPLIED, MISSING, NOOP
from rentcore.lifecycle.jobs import ContractJobs
from rentcore.models import (
    AuditLog,
    Contract,
    ContractStatus,
    HandoverStatus,
    HandoverType,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Room,
    RoomHandover,
    RoomStatus,
)
from rentcore.services.settings_service import BillingSettings


def _jobs(session_factory, notifier, today, **settings):
    return ContractJobs(
        session_factory=session_factory,
        notifier=notifier,
        settings=BillingSettings(**settings),
        today=lambda: today,
    )


def test_activation_is_idempotent_for_contract_42(session_factory, make_contract, notifier):
    make_contract(
        contract_id=42,
        status=ContractStatus.BOOKED,
        start=date(2024, 6, 1),
        room_status=RoomStatus.RESERVED,
    )
    jobs = _jobs(session_factory, notifier, date(2024, 6, 1))

    first = jobs.activate(42, date(2024, 6, 1))
    second = jobs.activate(42, date(2024, 6, 1))

    assert first.status == APPLIED
    assert second.status == NOOP
    assert second.detail == "status_not_eligible"
    with session_factory() as db:
        contract = db.get(Contract, 42)
        assert contract.status == ContractStatus.ACTIVE
        assert db.get(Room, contract.room_id).status == RoomStatus.OCCUPIED
        audits = db.query(AuditLog).filter(AuditLog.event == "contract_activate", AuditLog.subject_id == 42).count()
        assert audits == 1
    assert len(notifier.calls) == 1
    assert notifier.calls[0]["meta"]["event"] == "activated"


def test_activation_before_start_date_is_a_noop(session_factory, make_contract, notifier):
    contract = make_contract(status=ContractStatus.BOOKED, start=date(2024, 6, 10), room_status=RoomStatus.RESERVED)
    outcome = _jobs(session_factory, notifier, date(2024, 6, 1)).activate(contract.id, date(2024, 6, 1))

    assert outcome.status == NOOP
    assert outcome.detail == "guard_not_met"
    assert notifier.calls == []


def test_missing_contract_is_reported_not_raised(session_factory, notifier, caplog):
    with caplog.at_level(logging.WARNING):
        outcome = _jobs(session_factory, notifier, date(2024, 6, 1)).activate(999, date(2024, 6, 1))

    assert outcome.status == MISSING
    assert outcome.data == {"contract_id": 999}
    assert any(record.getMessage() == "contract.missing" for record in caplog.records)


def test_overdue_marking_converges(session_factory, make_contract, make_invoice, notifier):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 1), duration_count=3)
    invoice = make_invoice(contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7))
    jobs = _jobs(session_factory, notifier, date(2024, 2, 10))

    first = jobs.mark_overdue(contract.id)
    second = jobs.mark_overdue(contract.id)

    assert first.detail == "marked_overdue"
    assert second.status == NOOP
    assert second.detail == "already_overdue"
    with session_factory() as db:
        assert db.get(Contract, contract.id).status == ContractStatus.OVERDUE
        assert db.get(Invoice, invoice.id).status == InvoiceStatus.OVERDUE
    assert [call["meta"]["event"] for call in notifier.calls] == ["overdue"]


def test_overdue_contract_flags_newly_late_invoices(session_factory, make_contract, make_invoice, notifier):
    contract = make_contract(status=ContractStatus.OVERDUE, start=date(2024, 1, 1), duration_count=3)
    make_invoice(
        contract, date(2024, 2, 1), date(2024, 2, 29), due_date=date(2024, 2, 7), status=InvoiceStatus.OVERDUE
    )
    march = make_invoice(contract, date(2024, 3, 1), date(2024, 3, 31), due_date=date(2024, 3, 7))

    outcome = _jobs(session_factory, notifier, date(2024, 3, 9)).mark_overdue(contract.id)

    assert outcome.detail == "invoices_flagged"
    assert outcome.data["invoices"] == 1
    with session_factory() as db:
        assert db.get(Invoice, march.id).status == InvoiceStatus.OVERDUE
        audit = db.query(AuditLog).filter(AuditLog.event == "contract_invoices_flagged_overdue").one()
        assert audit.subject_id == contract.id
        assert audit.properties["invoice_ids"] == [march.id]
        assert audit.properties["as_of"] == "2024-03-09"
    assert notifier.calls == []


def test_cancel_after_grace_voids_receivables(session_factory, make_contract, make_invoice, make_payment, notifier):
    contract = make_contract(
        status=ContractStatus.PENDING_PAYMENT,
        start=date(2024, 1, 1),
        auto_renew=True,
        room_status=RoomStatus.RESERVED,
    )
    invoice = make_invoice(contract, date(2024, 1, 1), date(2024, 1, 31), due_date=date(2024, 1, 3))
    payment = make_payment(invoice, method=PaymentMethod.TRANSFER, status=PaymentStatus.REVIEW, provider=None)

    outcome = _jobs(session_factory, notifier, date(2024, 1, 10)).cancel_overdue(
        contract.id, "grace_period_elapsed_unpaid", threshold=date(2024, 1, 3), grace_days=7
    )

    assert outcome.detail == "cancelled"
    with session_factory() as db:
        cancelled = db.get(Contract, contract.id)
        assert cancelled.status == ContractStatus.CANCELLED
        assert cancelled.auto_renew is False
        assert cancelled.renewal_cancelled_at is not None
        assert db.get(Room, cancelled.room_id).status == RoomStatus.VACANT
        assert db.get(Invoice, invoice.id).status == InvoiceStatus.CANCELLED
        voided = db.get(Payment, payment.id)
        assert voided.status == PaymentStatus.CANCELLED
        assert voided.meta["void_reason"] == "grace_period_elapsed_unpaid"
        audit = db.query(AuditLog).filter(AuditLog.event == "contract_cancel").one()
        assert audit.properties["threshold"] == "2024-01-03"
        assert audit.properties["grace_days"] == 7


def test_cancel_waits_for_grace_period(session_factory, make_contract, make_invoice, notifier):
    contract = make_contract(status=ContractStatus.PENDING_PAYMENT, start=date(2024, 1, 8))
    make_invoice(contract, date(2024, 1, 8), date(2024, 1, 31), due_date=date(2024, 1, 3))

    outcome = _jobs(session_factory, notifier, date(2024, 1, 10)).cancel_overdue(
        contract.id, "grace_period_elapsed_unpaid", threshold=date(2024, 1, 3), grace_days=7
    )

    assert outcome.status == NOOP
    with session_factory() as db:
        assert db.get(Contract, contract.id).status == ContractStatus.PENDING_PAYMENT


def test_complete_ended_releases_room(session_factory, make_contract, notifier):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 3, 1), duration_count=1)

    outcome = _jobs(session_factory, notifier, date(2024, 4, 1)).complete_ended(contract.id)

    assert outcome.detail == "completed"
    with session_factory() as db:
        completed = db.get(Contract, contract.id)
        assert completed.status == ContractStatus.COMPLETED
        assert db.get(Room, completed.room_id).status == RoomStatus.VACANT


def test_complete_ended_renews_auto_renew_contract(session_factory, make_contract, notifier):
    contract = make_contract(
        status=ContractStatus.ACTIVE,
        start=date(2024, 1, 15),
        duration_count=3,
        auto_renew=True,
        deposit=500_000,
    )

    outcome = _jobs(session_factory, notifier, date(2024, 4, 15)).complete_ended(contract.id)

    assert outcome.detail == "renewed"
    with session_factory() as db:
        old = db.get(Contract, contract.id)
        successor = db.query(Contract).filter(Contract.renewed_from_id == contract.id).one()
        assert old.status == ContractStatus.COMPLETED
        assert successor.status == ContractStatus.PENDING_PAYMENT
        assert successor.start_date == date(2024, 4, 15)
        assert successor.end_date == date(2024, 7, 14)
        assert successor.duration_count == 3
        assert successor.deposit_amount == 0
        assert successor.auto_renew is True
        assert db.get(Room, old.room_id).status == RoomStatus.RESERVED
        assert db.query(Invoice).filter(Invoice.contract_id == successor.id).count() == 1


def test_renewal_recharges_deposit_when_rollover_is_off(session_factory, make_contract, notifier):
    contract = make_contract(
        status=ContractStatus.ACTIVE,
        start=date(2024, 1, 15),
        duration_count=3,
        auto_renew=True,
        deposit=500_000,
    )

    outcome = _jobs(session_factory, notifier, date(2024, 4, 15), deposit_renewal_rollover=False).complete_ended(
        contract.id
    )

    assert outcome.detail == "renewed"
    with session_factory() as db:
        successor = db.query(Contract).filter(Contract.renewed_from_id == contract.id).one()
        assert successor.deposit_amount == 500_000
        invoice = db.query(Invoice).filter(Invoice.contract_id == successor.id).one()
        deposits = [item for item in invoice.line_items if item["code"] == "DEPOSIT"]
        assert [item["amount"] for item in deposits] == [500_000]
        assert invoice.amount == sum(item["amount"] for item in invoice.line_items)


def test_disputed_checkin_is_not_reactivated_by_scheduler(session_factory, make_contract, notifier):
    contract = make_contract(status=ContractStatus.BOOKED, start=date(2024, 6, 1), room_status=RoomStatus.RESERVED)
    with session_factory() as db:
        db.add(
            RoomHandover(
                contract_id=contract.id,
                type=HandoverType.CHECKIN,
                status=HandoverStatus.DISPUTED,
                auto_transitioned=True,
            )
        )
        db.commit()

    outcome = _jobs(session_factory, notifier, date(2024, 6, 2)).activate(contract.id, date(2024, 6, 2))

    assert outcome.status == NOOP
    assert outcome.detail == "guard_not_met"
    with session_factory() as db:
        assert db.get(Contract, contract.id).status == ContractStatus.BOOKED
    assert notifier.calls == []


def test_auto_renew_does_not_duplicate_successor(session_factory, make_contract, notifier):
    current = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 15), duration_count=3, auto_renew=True)
    make_contract(
        status=ContractStatus.BOOKED,
        start=date(2024, 4, 15),
        duration_count=3,
        tenant=current.tenant,
        room=current.room,
    )

    outcome = _jobs(session_factory, notifier, date(2024, 4, 10)).auto_renew(current.id)

    assert outcome.status == NOOP
    assert outcome.detail == "successor_exists"
    with session_factory() as db:
        assert db.query(Contract).count() == 2
        assert db.get(Contract, current.id).status == ContractStatus.ACTIVE
    assert notifier.calls == []


def test_auto_renew_skips_opted_out_contract(session_factory, make_contract, notifier):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 15), duration_count=3, auto_renew=False)

    outcome = _jobs(session_factory, notifier, date(2024, 4, 10)).auto_renew(contract.id)

    assert outcome.status == NOOP
    assert outcome.detail == "not_renewable"


def test_notification_failure_does_not_roll_back(session_factory, make_contract):
    contract = make_contract(status=ContractStatus.BOOKED, start=date(2024, 6, 1), room_status=RoomStatus.RESERVED)

    class Broken:
        def notify_user(self, *args, **kwargs):
            raise RuntimeError("push service down")

    outcome = _jobs(session_factory, Broken(), date(2024, 6, 1)).activate(contract.id, date(2024, 6, 1))

    assert outcome.status == APPLIED
    with session_factory() as db:
        assert db.get(Contract, contract.id).status == ContractStatus.ACTIVE
