from __future__ import annotations

from datetime import date

from rentcore.models import BillingPeriod, ContractStatus, InvoiceStatus, PaymentStatus
from rentcore.services.settings_service import BillingSettings
from rentcore.tasks.sweeps import CANCEL_REASON, Sweeper


class RecordingDispatch:
    def __init__(self):
        self.sent = []

    def __call__(self, task_name, payload):
        self.sent.append((task_name, payload))


def _sweeper(session_factory, dispatch, today=date(2024, 6, 10), **settings):
    return Sweeper(
        session_factory=session_factory,
        dispatch=dispatch,
        settings=BillingSettings(**settings),
        today=lambda: today,
    )


def test_activate_due_selects_booked_contracts_that_started(session_factory, make_contract):
    due = make_contract(status=ContractStatus.BOOKED, start=date(2024, 6, 1))
    make_contract(status=ContractStatus.BOOKED, start=date(2024, 6, 20))
    make_contract(status=ContractStatus.PENDING_PAYMENT, start=date(2024, 6, 1))
    dispatch = RecordingDispatch()

    report = _sweeper(session_factory, dispatch).activate_due()

    assert report.as_dict() == {"sweep": "activate_due", "queued": 1, "dry_run": False}
    assert dispatch.sent == [("contracts.activate", {"contract_id": due.id, "as_of": "2024-06-10"})]


def test_dry_run_counts_without_dispatching(session_factory, make_contract):
    for _ in range(3):
        make_contract(status=ContractStatus.ACTIVE, start=date(2024, 4, 1), duration_count=2)
    dispatch = RecordingDispatch()

    report = _sweeper(session_factory, dispatch).complete_ended(chunk_size=1, dry_run=True)

    assert report.queued == 3
    assert report.dry_run is True
    assert dispatch.sent == []


def test_small_chunks_visit_every_row_once(session_factory, make_contract):
    ids = [make_contract(status=ContractStatus.ACTIVE, start=date(2024, 4, 1), duration_count=2).id for _ in range(5)]
    dispatch = RecordingDispatch()

    _sweeper(session_factory, dispatch).complete_ended(chunk_size=2)

    assert [payload["contract_id"] for _, payload in dispatch.sent] == sorted(ids)


def test_mark_overdue_selects_contracts_with_past_due_invoices(session_factory, make_contract, make_invoice):
    late = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 5, 1), duration_count=3)
    make_invoice(late, date(2024, 6, 1), date(2024, 6, 30), due_date=date(2024, 6, 7))
    on_time = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 5, 1), duration_count=3)
    make_invoice(on_time, date(2024, 6, 1), date(2024, 6, 30), due_date=date(2024, 6, 12))
    dispatch = RecordingDispatch()

    _sweeper(session_factory, dispatch).mark_overdue()

    assert dispatch.sent == [("contracts.mark_overdue", {"contract_id": late.id})]


def test_cancel_overdue_uses_grace_threshold(session_factory, make_contract, make_invoice):
    stale = make_contract(status=ContractStatus.OVERDUE, start=date(2024, 4, 1), duration_count=3)
    make_invoice(stale, date(2024, 5, 1), date(2024, 5, 31), due_date=date(2024, 5, 7), status=InvoiceStatus.OVERDUE)
    recent = make_contract(status=ContractStatus.OVERDUE, start=date(2024, 4, 1), duration_count=3)
    make_invoice(recent, date(2024, 6, 1), date(2024, 6, 30), due_date=date(2024, 6, 7), status=InvoiceStatus.OVERDUE)
    unpaid = make_contract(status=ContractStatus.PENDING_PAYMENT, start=date(2024, 5, 20))
    make_invoice(unpaid, date(2024, 5, 20), date(2024, 5, 31), due_date=date(2024, 5, 22))
    dispatch = RecordingDispatch()

    report = _sweeper(session_factory, dispatch, grace_days=7).cancel_overdue()

    assert report.queued == 2
    expected = {"reason": CANCEL_REASON, "threshold": "2024-06-03", "grace_days": 7}
    assert dispatch.sent == [
        ("contracts.cancel_overdue", {"contract_id": stale.id, **expected}),
        ("contracts.cancel_overdue", {"contract_id": unpaid.id, **expected}),
    ]


def test_generate_monthly_targets_open_monthly_contracts(session_factory, make_contract):
    monthly = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 5, 1), duration_count=3)
    make_contract(status=ContractStatus.ACTIVE, start=date(2024, 6, 1), billing_period=BillingPeriod.WEEKLY)
    make_contract(status=ContractStatus.CANCELLED, start=date(2024, 5, 1), duration_count=3)
    make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 1), duration_count=2)
    dispatch = RecordingDispatch()

    _sweeper(session_factory, dispatch).generate_monthly(target=date(2024, 6, 15))

    assert dispatch.sent == [("billing.generate_monthly", {"contract_id": monthly.id, "target": "2024-06"})]


def test_auto_renew_due_honours_lead_days_and_opt_out(session_factory, make_contract):
    due = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 5, 15), auto_renew=True)
    make_contract(status=ContractStatus.ACTIVE, start=date(2024, 6, 1), auto_renew=True)
    make_contract(status=ContractStatus.ACTIVE, start=date(2024, 5, 15), auto_renew=False)
    dispatch = RecordingDispatch()

    _sweeper(session_factory, dispatch, auto_renew_lead_days=7).auto_renew_due()

    assert dispatch.sent == [("contracts.auto_renew", {"contract_id": due.id})]


def test_sync_pending_payments_only_polls_gateway_payments(session_factory, make_contract, make_invoice, make_payment):
    contract = make_contract()
    invoice = make_invoice(contract, date(2024, 6, 1), date(2024, 6, 30), due_date=date(2024, 6, 7))
    pending = make_payment(invoice)
    make_payment(invoice, status=PaymentStatus.COMPLETED)
    make_payment(invoice, provider=None)
    dispatch = RecordingDispatch()

    _sweeper(session_factory, dispatch).sync_pending_payments()

    assert dispatch.sent == [("payments.sync", {"payment_id": pending.id})]
