"""Auto-renewal of contracts that reach the end of their term."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy.orm import Session

from rentcore.core.schemas import ContractDraft
from rentcore.lifecycle.state_machine import TransitionResult, handover_disputed
from rentcore.models.contract import Contract
from rentcore.models.enums import LIVE_CONTRACT_STATUSES, BillingPeriod, ContractStatus, HandoverType
from rentcore.services.contract_service import ContractService
from rentcore.services.settings_service import BillingSettings
from rentcore.utils.clock import today as business_today
from rentcore.utils.dates import count_full_months, count_weeks, days_inclusive

logger = logging.getLogger(__name__)

RENEWAL_CAUSE = "auto_renewal"


@dataclass(frozen=True)
class RenewalTerm:
    start_date: date
    billing_period: BillingPeriod
    duration_count: int


@dataclass(frozen=True)
class RenewalResult:
    successor: Contract | None
    completion: TransitionResult | None = None
    skipped_reason: str | None = None

    @property
    def renewed(self) -> bool:
        return self.skipped_reason is None


def compute_term(contract: Contract) -> RenewalTerm:
    """Re-derive the renewal term from the dates of the current one."""
    days = max(1, days_inclusive(contract.start_date, contract.end_date))
    if contract.billing_period == BillingPeriod.DAILY:
        count = days
    elif contract.billing_period == BillingPeriod.WEEKLY:
        count = count_weeks(contract.start_date, contract.end_date)
    else:
        count = count_full_months(contract.start_date, contract.end_date)
    return RenewalTerm(
        start_date=contract.end_date + timedelta(days=1),
        billing_period=contract.billing_period,
        duration_count=max(1, count),
    )


class RenewalEngine:
    """Creates the successor contract and completes the renewed one.

    Runs inside the caller's transaction; the caller holds the row lock on
    ``contract`` and commits both writes together.
    """

    def __init__(
        self,
        db: Session,
        settings: BillingSettings,
        contracts: ContractService | None = None,
        today: Callable[[], date] = business_today,
    ) -> None:
        self.db = db
        self.settings = settings
        self.today = today
        self.contracts = contracts or ContractService(db, settings=settings, today=today)

    def is_renewable(self, contract: Contract) -> bool:
        return (
            contract.status == ContractStatus.ACTIVE
            and contract.auto_renew
            and contract.renewal_cancelled_at is None
            and not handover_disputed(self.db, contract.id, HandoverType.CHECKOUT)
        )

    def find_successor(self, contract: Contract, start: date | None = None) -> Contract | None:
        start = start or contract.end_date + timedelta(days=1)
        return (
            self.db.query(Contract)
            .filter(
                Contract.tenant_id == contract.tenant_id,
                Contract.room_id == contract.room_id,
                Contract.id != contract.id,
                Contract.status.in_(LIVE_CONTRACT_STATUSES),
                Contract.start_date >= start,
            )
            .order_by(Contract.start_date)
            .first()
        )

    def renew(self, contract: Contract) -> RenewalResult:
        if not self.is_renewable(contract):
            return RenewalResult(successor=None, skipped_reason="not_renewable")

        term = compute_term(contract)
        existing = self.find_successor(contract, term.start_date)
        if existing is not None:
            logger.debug(
                "contract.renewal.duplicate",
                extra={
                    "event": "contract.renewal.duplicate",
                    "contract_id": contract.id,
                    "successor_id": existing.id,
                },
            )
            return RenewalResult(successor=existing, skipped_reason="successor_exists")

        successor = self.contracts.create(
            ContractDraft(
                tenant_id=contract.tenant_id,
                room_id=contract.room_id,
                start_date=term.start_date,
                billing_period=term.billing_period,
                duration_count=term.duration_count,
                rent_amount=contract.rent_amount,
                deposit_amount=0 if self.settings.deposit_renewal_rollover else contract.deposit_amount,
                auto_renew=True,
                renewed_from_id=contract.id,
                notes=f"Auto-renewal of contract #{contract.id}",
            )
        )
        completion = self.contracts.complete(contract, cause=RENEWAL_CAUSE, as_of=self.today())
        logger.info(
            "contract.renewed",
            extra={
                "event": "contract.renewed",
                "contract_id": contract.id,
                "successor_id": successor.id,
                "duration_count": term.duration_count,
            },
        )
        return RenewalResult(successor=successor, completion=completion)
