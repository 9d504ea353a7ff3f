from __future__ import annotations

from datetime import date, datetime

from rentcore.billing.invoice_generator import InvoiceGenerator
from rentcore.core.outcomes import APPLIED, MISSING, NOOP
from rentcore.models import BillingPeriod, ContractStatus, Invoice, InvoiceStatus, ProrataCharging
from rentcore.services.settings_service import BillingSettings


def _generator(session_factory, now=datetime(2024, 1, 1, 9, 0), **settings):
    return InvoiceGenerator(
        session_factory=session_factory,
        settings=BillingSettings(**settings),
        now=lambda: now,
    )


def _invoices(session_factory, contract_id):
    with session_factory() as db:
        return (
            db.query(Invoice)
            .filter(Invoice.contract_id == contract_id)
            .order_by(Invoice.period_start)
            .all()
        )


def test_catch_up_issues_each_missing_month(session_factory, make_contract, make_invoice):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 1), duration_count=6, rent=2_000_000)
    make_invoice(
        contract, date(2024, 1, 1), date(2024, 1, 31), due_date=date(2024, 1, 3), amount=2_000_000,
        status=InvoiceStatus.PAID,
    )

    outcome = _generator(session_factory).generate_monthly(contract.id, date(2024, 3, 1))

    assert outcome.status == APPLIED
    assert outcome.detail == "invoices_issued"
    assert len(outcome.data["invoices"]) == 2
    invoices = _invoices(session_factory, contract.id)
    assert [(inv.period_start, inv.period_end) for inv in invoices] == [
        (date(2024, 1, 1), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 29)),
        (date(2024, 3, 1), date(2024, 3, 31)),
    ]
    february = invoices[1]
    assert february.amount == 2_000_000
    assert february.due_date == date(2024, 2, 7)
    assert february.line_items[0]["code"] == "RENT"
    assert february.number.startswith("INV-202402-")


def test_repeated_catch_up_creates_no_duplicates(session_factory, make_contract, make_invoice):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 1), duration_count=6)
    make_invoice(contract, date(2024, 1, 1), date(2024, 1, 31), due_date=date(2024, 1, 3), status=InvoiceStatus.PAID)
    generator = _generator(session_factory)

    generator.generate_monthly(contract.id, date(2024, 3, 1))
    again = generator.generate_monthly(contract.id, date(2024, 3, 1))

    assert again.status == NOOP
    assert again.detail == "period_covered"
    assert len(_invoices(session_factory, contract.id)) == 3


def test_catch_up_stops_at_contract_end(session_factory, make_contract, make_invoice):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 15), duration_count=2)
    make_invoice(contract, date(2024, 1, 15), date(2024, 1, 31), due_date=date(2024, 1, 17), status=InvoiceStatus.PAID)

    outcome = _generator(session_factory).generate_monthly(contract.id, date(2024, 6, 1))

    assert outcome.status == APPLIED
    periods = [(inv.period_start, inv.period_end) for inv in _invoices(session_factory, contract.id)]
    assert periods[-1] == (date(2024, 3, 1), date(2024, 3, 14))
    assert len(periods) == 3


def test_trailing_partial_month_uses_prorata_policy(session_factory, make_contract, make_invoice):
    contract = make_contract(status=ContractStatus.ACTIVE, start=date(2024, 1, 15), duration_count=2, rent=3_000_000)
    make_invoice(contract, date(2024, 1, 15), date(2024, 2, 29), due_date=date(2024, 1, 17), status=InvoiceStatus.PAID)

    _generator(session_factory, prorata_charging=ProrataCharging.THRESHOLD, prorata_free_threshold_days=7).generate_monthly(
        contract.id, date(2024, 3, 1)
    )

    march = _invoices(session_factory, contract.id)[-1]
    assert march.period_end == date(2024, 3, 14)
    line = march.line_items[0]
    assert line["code"] == "PRORATA"
    assert line["meta"]["days"] == 14
    assert line["meta"]["free_days"] == 7
    assert march.amount == 100_000 * 7


def test_contract_without_invoices_gets_initial_invoice(session_factory, make_contract):
    contract = make_contract(
        status=ContractStatus.PENDING_PAYMENT, start=date(2024, 1, 1), duration_count=3, deposit=750_000
    )

    outcome = _generator(session_factory).generate_monthly(contract.id, date(2024, 3, 1))

    assert outcome.detail == "initial_invoice"
    (invoice,) = _invoices(session_factory, contract.id)
    assert [item["code"] for item in invoice.line_items] == ["RENT", "DEPOSIT"]
    assert invoice.amount == 1_500_000 + 750_000
    assert invoice.due_date == date(2024, 1, 3)


def test_closed_and_non_monthly_contracts_are_skipped(session_factory, make_contract):
    cancelled = make_contract(status=ContractStatus.CANCELLED, start=date(2024, 1, 1), duration_count=3)
    weekly = make_contract(
        status=ContractStatus.ACTIVE, start=date(2024, 1, 1), billing_period=BillingPeriod.WEEKLY, duration_count=4
    )
    generator = _generator(session_factory)

    assert generator.generate_monthly(cancelled.id, date(2024, 3, 1)).detail == "contract_closed"
    assert generator.generate_monthly(weekly.id, date(2024, 3, 1)).detail == "not_monthly"
    assert generator.generate_monthly(4040, date(2024, 3, 1)).status == MISSING
