"""Nightly sweeps that enqueue one lifecycle job per candidate row.

Sweeps only select and dispatch; every guard is re-checked by the handler
against the locked row, so a loose selection is harmless.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from sqlalchemy import and_, exists, or_
from sqlalchemy.orm import Query, Session, sessionmaker

from rentcore.database.db import session_scope
from rentcore.models.contract import Contract
from rentcore.models.enums import (
    PAYABLE_INVOICE_STATUSES,
    TERMINAL_CONTRACT_STATUSES,
    BillingPeriod,
    ContractStatus,
    InvoiceStatus,
    PaymentStatus,
)
from rentcore.models.invoice import Invoice
from rentcore.models.payment import Payment
from rentcore.payments.gateway import PROVIDER
from rentcore.services.settings_service import BillingSettings, SettingsService
from rentcore.utils.clock import today as business_today
from rentcore.utils.dates import end_of_month, format_month, start_of_month

logger = logging.getLogger(__name__)

Dispatch = Callable[[str, dict[str, Any]], None]

DEFAULT_CHUNK_SIZE = 200
CANCEL_REASON = "grace_period_elapsed_unpaid"


@dataclass
class SweepReport:
    name: str
    queued: int = 0
    dry_run: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {"sweep": self.name, "queued": self.queued, "dry_run": self.dry_run}


def celery_dispatch(task_name: str, payload: dict[str, Any]) -> None:
    from rentcore.tasks.celery_app import celery_app

    celery_app.send_task(task_name, kwargs=payload)


def _chunked_ids(query: Query, column, chunk_size: int) -> Iterator[list[int]]:
    """Keyset-paginate ``column`` values of ``query`` in ascending order."""
    last_id = 0
    while True:
        rows = query.filter(column > last_id).order_by(column).limit(max(1, chunk_size)).all()
        if not rows:
            return
        ids = [row[0] for row in rows]
        yield ids
        last_id = ids[-1]


class Sweeper:
    """Runs the candidate queries and hands each hit to ``dispatch``."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        dispatch: Dispatch | None = None,
        settings: BillingSettings | None = None,
        today: Callable[[], date] = business_today,
    ) -> None:
        self.session_factory = session_factory
        self.dispatch = dispatch or celery_dispatch
        self._settings = settings
        self.today = today

    def _snapshot(self, db: Session) -> BillingSettings:
        return self._settings or SettingsService(db).snapshot()

    def _run(
        self,
        name: str,
        db: Session,
        query: Query,
        column,
        task_name: str,
        payload: Callable[[int], dict[str, Any]],
        chunk_size: int,
        dry_run: bool,
    ) -> SweepReport:
        report = SweepReport(name=name, dry_run=dry_run)
        for ids in _chunked_ids(query, column, chunk_size):
            for row_id in ids:
                report.queued += 1
                if dry_run:
                    continue
                self.dispatch(task_name, payload(row_id))
        logger.info(
            "sweep.finished",
            extra={"event": "sweep.finished", "task": task_name, **report.as_dict()},
        )
        return report

    def activate_due(self, chunk_size: int = DEFAULT_CHUNK_SIZE, dry_run: bool = False) -> SweepReport:
        today = self.today()
        with session_scope(self.session_factory) as db:
            query = db.query(Contract.id).filter(
                Contract.status == ContractStatus.BOOKED,
                Contract.start_date <= today,
            )
            return self._run(
                "activate_due",
                db,
                query,
                Contract.id,
                "contracts.activate",
                lambda contract_id: {"contract_id": contract_id, "as_of": today.isoformat()},
                chunk_size,
                dry_run,
            )

    def mark_overdue(self, chunk_size: int = DEFAULT_CHUNK_SIZE, dry_run: bool = False) -> SweepReport:
        today = self.today()
        with session_scope(self.session_factory) as db:
            past_due = exists().where(
                Invoice.contract_id == Contract.id,
                Invoice.status == InvoiceStatus.PENDING,
                Invoice.due_date < today,
            )
            query = db.query(Contract.id).filter(
                Contract.status.in_((ContractStatus.ACTIVE, ContractStatus.OVERDUE)),
                past_due,
            )
            return self._run(
                "mark_overdue",
                db,
                query,
                Contract.id,
                "contracts.mark_overdue",
                lambda contract_id: {"contract_id": contract_id},
                chunk_size,
                dry_run,
            )

    def cancel_overdue(self, chunk_size: int = DEFAULT_CHUNK_SIZE, dry_run: bool = False) -> SweepReport:
        today = self.today()
        with session_scope(self.session_factory) as db:
            grace_days = self._snapshot(db).grace_days
            threshold = today - timedelta(days=grace_days)
            overdue_invoice = exists().where(
                Invoice.contract_id == Contract.id,
                Invoice.status == InvoiceStatus.OVERDUE,
                Invoice.due_date <= threshold,
            )
            payable_invoice = exists().where(
                Invoice.contract_id == Contract.id,
                Invoice.status.in_(PAYABLE_INVOICE_STATUSES),
            )
            paid_invoice = exists().where(
                Invoice.contract_id == Contract.id,
                Invoice.status == InvoiceStatus.PAID,
            )
            query = db.query(Contract.id).filter(
                or_(
                    and_(
                        Contract.status == ContractStatus.OVERDUE,
                        or_(overdue_invoice, and_(Contract.start_date <= threshold, ~payable_invoice)),
                    ),
                    and_(
                        Contract.status.in_((ContractStatus.PENDING_PAYMENT, ContractStatus.BOOKED)),
                        Contract.start_date <= threshold,
                        ~paid_invoice,
                    ),
                )
            )
            return self._run(
                "cancel_overdue",
                db,
                query,
                Contract.id,
                "contracts.cancel_overdue",
                lambda contract_id: {
                    "contract_id": contract_id,
                    "reason": CANCEL_REASON,
                    "threshold": threshold.isoformat(),
                    "grace_days": grace_days,
                },
                chunk_size,
                dry_run,
            )

    def complete_ended(self, chunk_size: int = DEFAULT_CHUNK_SIZE, dry_run: bool = False) -> SweepReport:
        today = self.today()
        with session_scope(self.session_factory) as db:
            query = db.query(Contract.id).filter(
                Contract.status.in_((ContractStatus.ACTIVE, ContractStatus.OVERDUE)),
                Contract.end_date < today,
            )
            return self._run(
                "complete_ended",
                db,
                query,
                Contract.id,
                "contracts.complete_ended",
                lambda contract_id: {"contract_id": contract_id},
                chunk_size,
                dry_run,
            )

    def generate_monthly(
        self,
        target: date | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        dry_run: bool = False,
    ) -> SweepReport:
        month = start_of_month(target or self.today())
        label = format_month(month)
        with session_scope(self.session_factory) as db:
            query = db.query(Contract.id).filter(
                Contract.billing_period == BillingPeriod.MONTHLY,
                Contract.status.notin_(TERMINAL_CONTRACT_STATUSES),
                Contract.paid_in_full_at.is_(None),
                Contract.start_date <= end_of_month(month),
                Contract.end_date >= month,
            )
            return self._run(
                "generate_monthly",
                db,
                query,
                Contract.id,
                "billing.generate_monthly",
                lambda contract_id: {"contract_id": contract_id, "target": label},
                chunk_size,
                dry_run,
            )

    def auto_renew_due(self, chunk_size: int = DEFAULT_CHUNK_SIZE, dry_run: bool = False) -> SweepReport:
        today = self.today()
        with session_scope(self.session_factory) as db:
            lead_days = self._snapshot(db).auto_renew_lead_days
            query = db.query(Contract.id).filter(
                Contract.status == ContractStatus.ACTIVE,
                Contract.auto_renew.is_(True),
                Contract.renewal_cancelled_at.is_(None),
                Contract.end_date <= today + timedelta(days=lead_days),
            )
            return self._run(
                "auto_renew_due",
                db,
                query,
                Contract.id,
                "contracts.auto_renew",
                lambda contract_id: {"contract_id": contract_id},
                chunk_size,
                dry_run,
            )

    def sync_pending_payments(self, chunk_size: int = DEFAULT_CHUNK_SIZE, dry_run: bool = False) -> SweepReport:
        with session_scope(self.session_factory) as db:
            query = db.query(Payment.id).filter(
                Payment.status == PaymentStatus.PENDING,
                Payment.provider == PROVIDER,
            )
            return self._run(
                "sync_pending_payments",
                db,
                query,
                Payment.id,
                "payments.sync",
                lambda payment_id: {"payment_id": payment_id},
                chunk_size,
                dry_run,
            )


SWEEPS = (
    "activate_due",
    "mark_overdue",
    "cancel_overdue",
    "complete_ended",
    "generate_monthly",
    "auto_renew_due",
    "sync_pending_payments",
)
