"""Contract lifecycle transition table and the machine that applies it.

Every status change of a contract goes through :meth:`ContractStateMachine.apply`.
Guards run against the row the caller already locked; a guard that no longer
holds turns the transition into a successful no-op so redelivered jobs are safe.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from rentcore.database.queries import (
    has_paid_invoice,
    has_payable_invoice,
    invoices_of,
    latest_handover,
    other_contracts_on_room,
    past_due_pending_invoices,
)
from rentcore.models.contract import Contract
from rentcore.models.enums import (
    ContractStatus,
    HandoverStatus,
    HandoverType,
    InvoiceStatus,
    PaymentStatus,
    RoomStatus,
)
from rentcore.models.invoice import Invoice
from rentcore.models.payment import Payment
from rentcore.services.audit_service import AuditService
from rentcore.services.settings_service import BillingSettings
from rentcore.utils.clock import utcnow

logger = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    """Raised when a disallowed state transition is attempted."""


class ContractEvent(str, enum.Enum):
    ACTIVATE = "activate"
    CANCEL = "cancel"
    MARK_OVERDUE = "mark_overdue"
    COMPLETE = "complete"
    REVERT_COMPLETION = "revert_completion"
    CONFIRM_PAYMENT = "confirm_payment"
    RESOLVE_OVERDUE = "resolve_overdue"
    REVERT_ACTIVATION = "revert_activation"


class RoomEffect(str, enum.Enum):
    NONE = "none"
    OCCUPY = "occupy"
    RESERVE = "reserve"
    RELEASE = "release"


# Completion causes that do not wait for the term to end.
EARLY_COMPLETION_CAUSES = frozenset({"auto_renewal", "checkout"})
TERM_ENDED = "term_ended"

# Rooms in these states are managed by staff; transitions leave them alone.
_UNMANAGED_ROOM_STATUSES = (RoomStatus.MAINTENANCE, RoomStatus.INACTIVE)


@dataclass(frozen=True)
class TransitionContext:
    """Inputs a guard may consult besides the contract row itself."""

    as_of: date
    settings: BillingSettings = field(default_factory=BillingSettings)
    cause: str | None = None
    reason: str | None = None
    threshold: date | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def cancel_threshold(self) -> date:
        if self.threshold is not None:
            return self.threshold
        return self.as_of - timedelta(days=self.settings.grace_days)


Guard = Callable[[Session, Contract, TransitionContext], bool]
Effect = Callable[[Session, Contract, TransitionContext], None]


@dataclass(frozen=True)
class Transition:
    event: ContractEvent
    sources: tuple[ContractStatus, ...]
    target: ContractStatus
    guard: Guard
    room_effect: RoomEffect = RoomEffect.NONE
    effects: tuple[Effect, ...] = ()


@dataclass(frozen=True)
class TransitionResult:
    event: ContractEvent
    contract_id: int
    applied: bool
    from_status: ContractStatus
    to_status: ContractStatus
    skipped_reason: str | None = None


# Guards


def handover_disputed(db: Session, contract_id: int, handover_type: HandoverType) -> bool:
    """True while the latest handover of this type stands disputed."""
    handover = latest_handover(db, contract_id, handover_type)
    return handover is not None and handover.status == HandoverStatus.DISPUTED


def _start_reached(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
    if contract.start_date > ctx.as_of:
        return False
    checkin = latest_handover(db, contract.id, HandoverType.CHECKIN)
    if checkin is not None and checkin.status == HandoverStatus.DISPUTED:
        return False
    if ctx.settings.require_ack_for_activate:
        return checkin is not None and checkin.status == HandoverStatus.CONFIRMED
    return True


def _grace_elapsed_unpaid(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
    return contract.start_date <= ctx.cancel_threshold and not has_paid_invoice(db, contract.id)


def _overdue_past_threshold(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
    threshold = ctx.cancel_threshold
    for invoice in invoices_of(db, contract.id, InvoiceStatus.OVERDUE):
        if invoice.due_date <= threshold:
            return True
    return contract.start_date <= threshold and not has_payable_invoice(db, contract.id)


def _has_past_due_invoice(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
    return bool(past_due_pending_invoices(db, contract.id, ctx.as_of))


def _term_over(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
    cause = ctx.cause or TERM_ENDED
    checkout = latest_handover(db, contract.id, HandoverType.CHECKOUT)
    if checkout is not None and checkout.status == HandoverStatus.DISPUTED:
        return False
    if cause in EARLY_COMPLETION_CAUSES:
        return True
    if contract.end_date >= ctx.as_of:
        return False
    if ctx.settings.require_ack_for_complete:
        return checkout is not None and checkout.status == HandoverStatus.CONFIRMED
    return True


def _disputed_auto_handover(handover_type: HandoverType) -> Guard:
    def guard(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
        handover = latest_handover(db, contract.id, handover_type)
        return (
            handover is not None
            and handover.status == HandoverStatus.DISPUTED
            and handover.auto_transitioned
        )

    return guard


def _invoice_paid(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
    return has_paid_invoice(db, contract.id)


def _arrears_cleared(db: Session, contract: Contract, ctx: TransitionContext) -> bool:
    if invoices_of(db, contract.id, InvoiceStatus.OVERDUE):
        return False
    return not past_due_pending_invoices(db, contract.id, ctx.as_of)


# Effects


def flag_past_due_invoices(db: Session, contract: Contract, as_of: date) -> list[Invoice]:
    """Flip PENDING invoices whose due date has passed to OVERDUE."""
    flipped = past_due_pending_invoices(db, contract.id, as_of)
    for invoice in flipped:
        invoice.status = InvoiceStatus.OVERDUE
    return flipped


def _flag_past_due(db: Session, contract: Contract, ctx: TransitionContext) -> None:
    flag_past_due_invoices(db, contract, ctx.as_of)


def _void_receivables(db: Session, contract: Contract, ctx: TransitionContext) -> None:
    for invoice in invoices_of(db, contract.id, InvoiceStatus.PENDING, InvoiceStatus.OVERDUE):
        invoice.status = InvoiceStatus.CANCELLED
        payments = (
            db.query(Payment)
            .filter(
                Payment.invoice_id == invoice.id,
                Payment.status.in_((PaymentStatus.PENDING, PaymentStatus.REVIEW)),
            )
            .all()
        )
        for payment in payments:
            payment.status = PaymentStatus.CANCELLED
            meta = dict(payment.meta or {})
            meta["void_reason"] = ctx.reason or "contract_cancelled"
            payment.meta = meta


def _stop_renewal(db: Session, contract: Contract, ctx: TransitionContext) -> None:
    contract.auto_renew = False
    if contract.renewal_cancelled_at is None:
        contract.renewal_cancelled_at = utcnow()


TRANSITIONS: tuple[Transition, ...] = (
    Transition(
        event=ContractEvent.CONFIRM_PAYMENT,
        sources=(ContractStatus.PENDING_PAYMENT,),
        target=ContractStatus.BOOKED,
        guard=_invoice_paid,
        room_effect=RoomEffect.RESERVE,
    ),
    Transition(
        event=ContractEvent.ACTIVATE,
        sources=(ContractStatus.PENDING_PAYMENT, ContractStatus.BOOKED),
        target=ContractStatus.ACTIVE,
        guard=_start_reached,
        room_effect=RoomEffect.OCCUPY,
    ),
    Transition(
        event=ContractEvent.CANCEL,
        sources=(ContractStatus.PENDING_PAYMENT, ContractStatus.BOOKED),
        target=ContractStatus.CANCELLED,
        guard=_grace_elapsed_unpaid,
        room_effect=RoomEffect.RELEASE,
        effects=(_void_receivables, _stop_renewal),
    ),
    Transition(
        event=ContractEvent.CANCEL,
        sources=(ContractStatus.OVERDUE,),
        target=ContractStatus.CANCELLED,
        guard=_overdue_past_threshold,
        room_effect=RoomEffect.RELEASE,
        effects=(_void_receivables, _stop_renewal),
    ),
    Transition(
        event=ContractEvent.MARK_OVERDUE,
        sources=(ContractStatus.ACTIVE,),
        target=ContractStatus.OVERDUE,
        guard=_has_past_due_invoice,
        effects=(_flag_past_due,),
    ),
    Transition(
        event=ContractEvent.RESOLVE_OVERDUE,
        sources=(ContractStatus.OVERDUE,),
        target=ContractStatus.ACTIVE,
        guard=_arrears_cleared,
        room_effect=RoomEffect.OCCUPY,
    ),
    Transition(
        event=ContractEvent.COMPLETE,
        sources=(ContractStatus.ACTIVE, ContractStatus.OVERDUE),
        target=ContractStatus.COMPLETED,
        guard=_term_over,
        room_effect=RoomEffect.RELEASE,
    ),
    Transition(
        event=ContractEvent.REVERT_COMPLETION,
        sources=(ContractStatus.COMPLETED,),
        target=ContractStatus.ACTIVE,
        guard=_disputed_auto_handover(HandoverType.CHECKOUT),
        room_effect=RoomEffect.OCCUPY,
    ),
    Transition(
        event=ContractEvent.REVERT_ACTIVATION,
        sources=(ContractStatus.ACTIVE,),
        target=ContractStatus.BOOKED,
        guard=_disputed_auto_handover(HandoverType.CHECKIN),
        room_effect=RoomEffect.RESERVE,
    ),
)


class ContractStateMachine:
    """Applies :data:`TRANSITIONS` to locked contract rows."""

    def __init__(self, transitions: tuple[Transition, ...] = TRANSITIONS) -> None:
        self._transitions = transitions

    def find(self, current: ContractStatus, event: ContractEvent) -> Transition | None:
        for transition in self._transitions:
            if transition.event == event and current in transition.sources:
                return transition
        return None

    def can_transition(self, current: ContractStatus, event: ContractEvent) -> bool:
        return self.find(current, event) is not None

    def assert_transition(self, current: ContractStatus, event: ContractEvent) -> Transition:
        transition = self.find(current, event)
        if transition is None:
            raise InvalidTransitionError(f"Transition not allowed: {current.value} --{event.value}-->")
        return transition

    def allowed_events(self, current: ContractStatus) -> list[ContractEvent]:
        events: list[ContractEvent] = []
        for transition in self._transitions:
            if current in transition.sources and transition.event not in events:
                events.append(transition.event)
        return events

    def apply(
        self,
        db: Session,
        contract: Contract,
        event: ContractEvent,
        ctx: TransitionContext,
    ) -> TransitionResult:
        """Fire ``event`` on ``contract`` inside the caller's transaction.

        Returns an unapplied result when the contract is not in a source state
        or the guard is false; nothing is written in that case.
        """
        current = contract.status
        transition = self.find(current, event)
        if transition is None:
            return self._skipped(contract, event, "status_not_eligible")
        if not transition.guard(db, contract, ctx):
            return self._skipped(contract, event, "guard_not_met")

        contract.status = transition.target
        for effect in transition.effects:
            effect(db, contract, ctx)
        apply_room_effect(db, contract, transition.room_effect)
        db.flush()

        AuditService(db).record(
            event=f"contract_{event.value}",
            subject_type="contract",
            subject_id=contract.id,
            properties={
                "from": current.value,
                "to": transition.target.value,
                "cause": ctx.cause,
                "reason": ctx.reason,
                "as_of": ctx.as_of.isoformat(),
                **ctx.details,
            },
            description=f"Contract {event.value} ({ctx.cause or ctx.reason or 'scheduler'})",
        )
        logger.info(
            "contract.transition.applied",
            extra={
                "event": "contract.transition.applied",
                "transition": event.value,
                "contract_id": contract.id,
                "from_status": current.value,
                "to_status": transition.target.value,
                "cause": ctx.cause,
            },
        )
        return TransitionResult(
            event=event,
            contract_id=contract.id,
            applied=True,
            from_status=current,
            to_status=transition.target,
        )

    def _skipped(self, contract: Contract, event: ContractEvent, reason: str) -> TransitionResult:
        logger.debug(
            "contract.transition.skipped",
            extra={
                "event": "contract.transition.skipped",
                "transition": event.value,
                "contract_id": contract.id,
                "status": contract.status.value,
                "skipped_reason": reason,
            },
        )
        return TransitionResult(
            event=event,
            contract_id=contract.id,
            applied=False,
            from_status=contract.status,
            to_status=contract.status,
            skipped_reason=reason,
        )


def apply_room_effect(db: Session, contract: Contract, effect: RoomEffect) -> None:
    room = contract.room
    if effect == RoomEffect.NONE or room is None or room.status in _UNMANAGED_ROOM_STATUSES:
        return

    if effect == RoomEffect.OCCUPY:
        room.status = RoomStatus.OCCUPIED
        return

    holders = other_contracts_on_room(db, contract)
    if any(other.status == ContractStatus.ACTIVE for other in holders):
        room.status = RoomStatus.OCCUPIED
    elif effect == RoomEffect.RESERVE or holders:
        room.status = RoomStatus.RESERVED
    else:
        room.status = RoomStatus.VACANT
