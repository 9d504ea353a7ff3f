"""Room handover recording and its coupling to the contract lifecycle."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date

from sqlalchemy.orm import Session

from rentcore.core.exceptions import NotFoundError, ValidationError
from rentcore.database.queries import latest_handover, lock_contract
from rentcore.lifecycle.state_machine import (
    ContractEvent,
    ContractStateMachine,
    TransitionContext,
    TransitionResult,
)
from rentcore.models.contract import Contract
from rentcore.models.enums import HandoverStatus, HandoverType
from rentcore.models.handover import RoomHandover
from rentcore.services.audit_service import AuditService
from rentcore.services.base_service import BaseService
from rentcore.services.settings_service import BillingSettings, SettingsService
from rentcore.utils.clock import today as business_today
from rentcore.utils.clock import utcnow

logger = logging.getLogger(__name__)

OPEN_HANDOVER_STATUSES = (HandoverStatus.PENDING, HandoverStatus.CONFIRMED)

_COUPLED_EVENT = {
    HandoverType.CHECKIN: ContractEvent.ACTIVATE,
    HandoverType.CHECKOUT: ContractEvent.COMPLETE,
}
_REVERSAL_EVENT = {
    HandoverType.CHECKIN: ContractEvent.REVERT_ACTIVATION,
    HandoverType.CHECKOUT: ContractEvent.REVERT_COMPLETION,
}


class HandoverService(BaseService):
    """Records checkins and checkouts and fires the coupled transitions.

    Every public method commits: these are direct staff or tenant actions.
    """

    def __init__(
        self,
        db: Session | None = None,
        settings: BillingSettings | None = None,
        machine: ContractStateMachine | None = None,
        today: Callable[[], date] = business_today,
    ) -> None:
        super().__init__(db)
        self._settings = settings
        self.machine = machine or ContractStateMachine()
        self.today = today

    @property
    def settings(self) -> BillingSettings:
        if self._settings is None:
            self._settings = SettingsService(self.db).snapshot()
        return self._settings

    def requires_ack(self, handover_type: HandoverType) -> bool:
        if handover_type == HandoverType.CHECKIN:
            return self.settings.require_ack_for_activate
        return self.settings.require_ack_for_complete

    def record_checkin(self, contract_id: int, notes: str | None = None, user_id: int | None = None) -> RoomHandover:
        return self._record(contract_id, HandoverType.CHECKIN, notes, user_id)

    def record_checkout(self, contract_id: int, notes: str | None = None, user_id: int | None = None) -> RoomHandover:
        return self._record(contract_id, HandoverType.CHECKOUT, notes, user_id)

    def acknowledge(self, handover_id: int, user_id: int | None = None) -> RoomHandover:
        """Tenant confirms a pending handover; fires the coupled transition."""
        handover = self._get(handover_id)
        if handover.status != HandoverStatus.PENDING:
            raise ValidationError(f"handover {handover_id} is not awaiting acknowledgment")

        contract = self._lock(handover.contract_id)
        handover.status = HandoverStatus.CONFIRMED
        handover.acknowledged_at = utcnow()
        self.db.flush()
        self._audit(handover, "handover_acknowledged", user_id)
        self._couple(contract, handover, cause=self._cause(handover.type))
        self.commit()
        return handover

    def dispute(self, handover_id: int, reason: str, user_id: int | None = None) -> RoomHandover:
        """Tenant disputes a handover; reverts an automatic transition it caused."""
        if not reason.strip():
            raise ValidationError("a dispute needs a reason")
        handover = self._get(handover_id)
        if handover.status == HandoverStatus.DISPUTED:
            raise ValidationError(f"handover {handover_id} is already disputed")

        contract = self._lock(handover.contract_id)
        handover.status = HandoverStatus.DISPUTED
        handover.dispute_reason = reason.strip()
        handover.disputed_at = utcnow()
        self.db.flush()
        self._audit(handover, "handover_disputed", user_id, {"reason": handover.dispute_reason})

        if handover.auto_transitioned:
            ctx = TransitionContext(
                as_of=self.today(),
                settings=self.settings,
                cause="handover_dispute",
                reason=handover.dispute_reason,
                details={"handover_id": handover.id},
            )
            result = self.machine.apply(self.db, contract, _REVERSAL_EVENT[handover.type], ctx)
            if not result.applied:
                logger.info(
                    "handover.dispute.no_reversal",
                    extra={
                        "event": "handover.dispute.no_reversal",
                        "handover_id": handover.id,
                        "contract_id": contract.id,
                        "skipped_reason": result.skipped_reason,
                    },
                )
        self.commit()
        return handover

    def _record(
        self,
        contract_id: int,
        handover_type: HandoverType,
        notes: str | None,
        user_id: int | None,
    ) -> RoomHandover:
        contract = self._lock(contract_id)
        self._check_can_record(contract, handover_type)

        auto = not self.requires_ack(handover_type)
        handover = RoomHandover(
            contract_id=contract.id,
            type=handover_type,
            status=HandoverStatus.CONFIRMED if auto else HandoverStatus.PENDING,
            notes=notes,
        )
        self.db.add(handover)
        self.db.flush()
        self._audit(handover, f"handover_{handover_type.value}_recorded", user_id)

        if auto:
            result = self._couple(contract, handover, cause=self._cause(handover_type))
            handover.auto_transitioned = result.applied
            self.db.flush()
        self.commit()
        return handover

    def _check_can_record(self, contract: Contract, handover_type: HandoverType) -> None:
        checkin = latest_handover(self.db, contract.id, HandoverType.CHECKIN)
        if handover_type == HandoverType.CHECKIN:
            if checkin is not None and checkin.status in OPEN_HANDOVER_STATUSES:
                raise ValidationError(f"contract {contract.id} already has an open checkin")
            return

        if checkin is None or checkin.status != HandoverStatus.CONFIRMED:
            raise ValidationError(f"contract {contract.id} has no confirmed checkin")
        checkout = latest_handover(self.db, contract.id, HandoverType.CHECKOUT)
        if checkout is not None and checkout.status in OPEN_HANDOVER_STATUSES:
            raise ValidationError(f"contract {contract.id} already has an open checkout")

    def _couple(self, contract: Contract, handover: RoomHandover, cause: str) -> TransitionResult:
        ctx = TransitionContext(
            as_of=self.today(),
            settings=self.settings,
            cause=cause,
            details={"handover_id": handover.id},
        )
        return self.machine.apply(self.db, contract, _COUPLED_EVENT[handover.type], ctx)

    def _cause(self, handover_type: HandoverType) -> str:
        return "checkin" if handover_type == HandoverType.CHECKIN else "checkout"

    def _get(self, handover_id: int) -> RoomHandover:
        handover = self.db.get(RoomHandover, handover_id)
        if handover is None:
            raise NotFoundError(f"handover {handover_id} not found")
        return handover

    def _lock(self, contract_id: int) -> Contract:
        contract = lock_contract(self.db, contract_id)
        if contract is None:
            raise NotFoundError(f"contract {contract_id} not found")
        return contract

    def _audit(
        self,
        handover: RoomHandover,
        event: str,
        user_id: int | None,
        extra: dict | None = None,
    ) -> None:
        AuditService(self.db).record(
            event=event,
            subject_type="room_handover",
            subject_id=handover.id,
            properties={"contract_id": handover.contract_id, "user_id": user_id, **(extra or {})},
            log_name="handovers",
        )
