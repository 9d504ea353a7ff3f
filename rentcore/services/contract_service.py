"""Contract service for creation and lifecycle operations."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from rentcore.core.exceptions import NotFoundError, ValidationError
from rentcore.core.schemas import ContractDraft, parse_job
from rentcore.lifecycle.state_machine import (
    ContractEvent,
    ContractStateMachine,
    RoomEffect,
    TransitionContext,
    TransitionResult,
    apply_room_effect,
)
from rentcore.models.contract import Contract
from rentcore.models.enums import (
    LIVE_CONTRACT_STATUSES,
    TERMINAL_CONTRACT_STATUSES,
    BillingPeriod,
    ContractStatus,
    InvoiceStatus,
)
from rentcore.models.room import Room
from rentcore.models.tenant import Tenant
from rentcore.services.audit_service import AuditService
from rentcore.services.base_service import BaseService
from rentcore.services.invoice_service import InvoiceService
from rentcore.services.payment_service import PaymentService
from rentcore.services.settings_service import BillingSettings
from rentcore.utils.clock import today as business_today
from rentcore.utils.clock import utcnow
from rentcore.utils.dates import add_months

logger = logging.getLogger(__name__)

# Contracts that still claim their room for the purpose of overlap checks.
ROOM_HOLDING_STATUSES = (*LIVE_CONTRACT_STATUSES, ContractStatus.OVERDUE)


def compute_end_date(start: date, period: BillingPeriod, count: int) -> date:
    """Inclusive last day of a term of ``count`` billing periods starting on ``start``."""
    count = max(1, count)
    if period == BillingPeriod.DAILY:
        return start + timedelta(days=count - 1)
    if period == BillingPeriod.WEEKLY:
        return start + timedelta(days=7 * count - 1)
    return add_months(start, count) - timedelta(days=1)


class ContractService(BaseService):
    """Creates contracts and exposes the lifecycle transitions to manual callers."""

    def __init__(
        self,
        db: Session | None = None,
        settings: BillingSettings | None = None,
        machine: ContractStateMachine | None = None,
        invoices: InvoiceService | None = None,
        today: Callable[[], date] = business_today,
    ) -> None:
        super().__init__(db)
        self.settings = settings or BillingSettings()
        self.machine = machine or ContractStateMachine()
        self.invoices = invoices or InvoiceService(self.db)
        self.today = today

    def get_contract(self, contract_id: int) -> Contract | None:
        return self.db.query(Contract).filter(Contract.id == contract_id).first()

    def create(self, payload: dict[str, Any] | ContractDraft) -> Contract:
        """Create a PENDING_PAYMENT contract and issue its initial invoice."""
        draft = payload if isinstance(payload, ContractDraft) else parse_job(ContractDraft, payload)

        if self.db.get(Tenant, draft.tenant_id) is None:
            raise NotFoundError(f"tenant {draft.tenant_id} not found")
        if self.db.get(Room, draft.room_id) is None:
            raise NotFoundError(f"room {draft.room_id} not found")

        end_date = compute_end_date(draft.start_date, draft.billing_period, draft.duration_count)
        clash = (
            self.db.query(Contract.id)
            .filter(
                Contract.room_id == draft.room_id,
                Contract.status.in_(ROOM_HOLDING_STATUSES),
                Contract.start_date <= end_date,
                Contract.end_date >= draft.start_date,
            )
            .first()
        )
        if clash is not None:
            raise ValidationError(f"room {draft.room_id} is already contracted for the requested term")

        contract = Contract(
            tenant_id=draft.tenant_id,
            room_id=draft.room_id,
            status=ContractStatus.PENDING_PAYMENT,
            billing_period=draft.billing_period,
            duration_count=draft.duration_count,
            start_date=draft.start_date,
            end_date=end_date,
            rent_amount=draft.rent_amount,
            deposit_amount=draft.deposit_amount,
            auto_renew=draft.auto_renew,
            renewed_from_id=draft.renewed_from_id,
            notes=draft.notes,
        )
        self.db.add(contract)
        self.db.flush()

        apply_room_effect(self.db, contract, RoomEffect.RESERVE)
        invoice = self.invoices.generate_initial_invoice(contract, self.settings)
        AuditService(self.db).record(
            event="contract_created",
            subject_type="contract",
            subject_id=contract.id,
            properties={
                "invoice_id": invoice.id,
                "renewed_from_id": draft.renewed_from_id,
                "end_date": end_date.isoformat(),
            },
        )
        if invoice.status == InvoiceStatus.PAID:
            PaymentService(self.db, self.settings, self.machine, self.today).settle_contract(contract)

        logger.info(
            "contract.created",
            extra={
                "event": "contract.created",
                "contract_id": contract.id,
                "room_id": contract.room_id,
                "renewed_from_id": contract.renewed_from_id,
            },
        )
        return contract

    def complete(self, contract: Contract, cause: str | None = None, as_of: date | None = None) -> TransitionResult:
        return self._fire(contract, ContractEvent.COMPLETE, cause=cause, as_of=as_of)

    def cancel(
        self,
        contract: Contract,
        reason: str | None = None,
        threshold: date | None = None,
        as_of: date | None = None,
    ) -> TransitionResult:
        return self._fire(contract, ContractEvent.CANCEL, reason=reason, threshold=threshold, as_of=as_of)

    def mark_overdue(self, contract: Contract, as_of: date | None = None) -> TransitionResult:
        return self._fire(contract, ContractEvent.MARK_OVERDUE, as_of=as_of)

    def activate(self, contract: Contract, as_of: date | None = None, cause: str | None = None) -> TransitionResult:
        return self._fire(contract, ContractEvent.ACTIVATE, cause=cause, as_of=as_of)

    def stop_auto_renew(self, contract: Contract, user_id: int | None = None) -> Contract:
        """Tenant opt-out: the renewal sweep skips the contract from now on."""
        if contract.status in TERMINAL_CONTRACT_STATUSES:
            raise ValidationError(f"contract {contract.id} has already ended")
        if contract.auto_renew:
            contract.auto_renew = False
            contract.renewal_cancelled_at = contract.renewal_cancelled_at or utcnow()
            AuditService(self.db).record(
                event="contract_auto_renew_stopped",
                subject_type="contract",
                subject_id=contract.id,
                properties={"user_id": user_id},
            )
            self.db.flush()
        return contract

    def _fire(
        self,
        contract: Contract,
        event: ContractEvent,
        cause: str | None = None,
        reason: str | None = None,
        threshold: date | None = None,
        as_of: date | None = None,
    ) -> TransitionResult:
        ctx = TransitionContext(
            as_of=as_of or self.today(),
            settings=self.settings,
            cause=cause,
            reason=reason,
            threshold=threshold,
        )
        return self.machine.apply(self.db, contract, event, ctx)
