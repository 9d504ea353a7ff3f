"""Per-contract lifecycle job handlers.

Each handler opens one transaction, locks the contract row, re-checks the
guard through the state machine and commits. Notifications go out only after
the commit succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session, sessionmaker

from rentcore.core.outcomes import JobOutcome
from rentcore.database.db import session_scope
from rentcore.database.queries import lock_contract
from rentcore.lifecycle.renewal import RenewalEngine
from rentcore.lifecycle.state_machine import (
    TERM_ENDED,
    ContractEvent,
    ContractStateMachine,
    TransitionContext,
    flag_past_due_invoices,
)
from rentcore.models.contract import Contract
from rentcore.models.enums import ContractStatus
from rentcore.services.audit_service import AuditService
from rentcore.services.notification_service import NotificationSender, contract_url, safe_notify
from rentcore.services.settings_service import BillingSettings, SettingsService
from rentcore.utils.clock import today as business_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Notice:
    user_id: int
    title: str
    message: str
    contract_id: int
    kind: str


class ContractJobs:
    """Handlers behind the ``contracts.*`` tasks."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        notifier: NotificationSender | None = None,
        settings: BillingSettings | None = None,
        today: Callable[[], date] = business_today,
        machine: ContractStateMachine | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self._settings = settings
        self.today = today
        self.machine = machine or ContractStateMachine()

    def snapshot(self, db: Session) -> BillingSettings:
        return self._settings or SettingsService(db).snapshot()

    def activate(self, contract_id: int, as_of: date) -> JobOutcome:
        notice = None
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            if contract is None:
                return JobOutcome.missing("contract", contract_id)

            ctx = TransitionContext(as_of=as_of, settings=self.snapshot(db), cause="scheduler")
            result = self.machine.apply(db, contract, ContractEvent.ACTIVATE, ctx)
            if not result.applied:
                return JobOutcome.noop(result.skipped_reason or "guard_not_met", contract_id=contract_id)
            notice = self._notice(contract, "activated", "Contract active", "Your rental contract is now active.")

        self._deliver(notice)
        return JobOutcome.applied("activated", contract_id=contract_id)

    def mark_overdue(self, contract_id: int) -> JobOutcome:
        notice = None
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            if contract is None:
                return JobOutcome.missing("contract", contract_id)

            as_of = self.today()
            if contract.status == ContractStatus.OVERDUE:
                flipped = flag_past_due_invoices(db, contract, as_of)
                if not flipped:
                    return JobOutcome.noop("already_overdue", contract_id=contract_id)
                db.flush()
                AuditService(db).record(
                    event="contract_invoices_flagged_overdue",
                    subject_type="contract",
                    subject_id=contract.id,
                    properties={
                        "status": contract.status.value,
                        "invoice_ids": [invoice.id for invoice in flipped],
                        "as_of": as_of.isoformat(),
                    },
                    description="Past-due invoices flagged on overdue contract",
                )
                return JobOutcome.applied("invoices_flagged", contract_id=contract_id, invoices=len(flipped))

            ctx = TransitionContext(as_of=as_of, settings=self.snapshot(db), cause="scheduler")
            result = self.machine.apply(db, contract, ContractEvent.MARK_OVERDUE, ctx)
            if not result.applied:
                return JobOutcome.noop(result.skipped_reason or "guard_not_met", contract_id=contract_id)
            notice = self._notice(
                contract,
                "overdue",
                "Payment overdue",
                "An invoice for your contract is past due. Please settle it to avoid cancellation.",
            )

        self._deliver(notice)
        return JobOutcome.applied("marked_overdue", contract_id=contract_id)

    def cancel_overdue(self, contract_id: int, reason: str, threshold: date, grace_days: int) -> JobOutcome:
        notice = None
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            if contract is None:
                return JobOutcome.missing("contract", contract_id)

            ctx = TransitionContext(
                as_of=self.today(),
                settings=self.snapshot(db),
                cause="scheduler",
                reason=reason,
                threshold=threshold,
                details={"threshold": threshold.isoformat(), "grace_days": grace_days},
            )
            result = self.machine.apply(db, contract, ContractEvent.CANCEL, ctx)
            if not result.applied:
                return JobOutcome.noop(result.skipped_reason or "guard_not_met", contract_id=contract_id)
            notice = self._notice(contract, "cancelled", "Contract cancelled", "Your rental contract has been cancelled.")

        self._deliver(notice)
        return JobOutcome.applied("cancelled", contract_id=contract_id, reason=reason)

    def complete_ended(self, contract_id: int) -> JobOutcome:
        """Complete a contract whose term ended, renewing it first when auto-renew is on."""
        notice = None
        detail = "completed"
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            if contract is None:
                return JobOutcome.missing("contract", contract_id)

            settings = self.snapshot(db)
            as_of = self.today()
            engine = RenewalEngine(db, settings, today=self.today)
            if engine.is_renewable(contract) and contract.end_date < as_of:
                renewal = engine.renew(contract)
                if renewal.renewed:
                    detail = "renewed"
                    notice = self._notice(
                        contract,
                        "renewed",
                        "Contract renewed",
                        f"Your contract was renewed as contract #{renewal.successor.id}.",
                    )

            if notice is None:
                ctx = TransitionContext(as_of=as_of, settings=settings, cause=TERM_ENDED)
                result = self.machine.apply(db, contract, ContractEvent.COMPLETE, ctx)
                if not result.applied:
                    return JobOutcome.noop(result.skipped_reason or "guard_not_met", contract_id=contract_id)
                notice = self._notice(contract, "completed", "Contract completed", "Your rental contract has ended.")

        self._deliver(notice)
        return JobOutcome.applied(detail, contract_id=contract_id)

    def auto_renew(self, contract_id: int) -> JobOutcome:
        notice = None
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            if contract is None:
                return JobOutcome.missing("contract", contract_id)

            renewal = RenewalEngine(db, self.snapshot(db), today=self.today).renew(contract)
            if not renewal.renewed:
                return JobOutcome.noop(renewal.skipped_reason or "not_renewable", contract_id=contract_id)
            successor_id = renewal.successor.id
            notice = self._notice(
                contract,
                "renewed",
                "Contract renewed",
                f"Your contract was renewed as contract #{successor_id}.",
            )

        self._deliver(notice)
        return JobOutcome.applied("renewed", contract_id=contract_id, successor_id=successor_id)

    def _notice(self, contract: Contract, kind: str, title: str, message: str) -> _Notice:
        return _Notice(
            user_id=contract.tenant_id,
            title=title,
            message=message,
            contract_id=contract.id,
            kind=kind,
        )

    def _deliver(self, notice: _Notice | None) -> None:
        if notice is None:
            return
        safe_notify(
            self.notifier,
            notice.user_id,
            notice.title,
            notice.message,
            contract_url(notice.contract_id),
            {"type": "contract", "event": notice.kind, "contract_id": str(notice.contract_id)},
        )
