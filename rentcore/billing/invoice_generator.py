"""Monthly invoice catch-up for a single contract."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session, sessionmaker

from rentcore.billing.pricing import PricingService
from rentcore.core.outcomes import JobOutcome
from rentcore.database.db import session_scope
from rentcore.database.queries import lock_contract
from rentcore.models.contract import Contract
from rentcore.models.enums import TERMINAL_CONTRACT_STATUSES, BillingPeriod
from rentcore.services.invoice_service import InvoiceService
from rentcore.services.settings_service import BillingSettings, SettingsService
from rentcore.utils.clock import local_now
from rentcore.utils.dates import end_of_month, format_month, next_month_start, start_of_month

logger = logging.getLogger(__name__)


class InvoiceGenerator:
    """Ensures one non-cancelled invoice per month up to a target month.

    Every month is issued in its own transaction: a failure aborts only the
    month being issued and leaves the earlier ones committed.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        pricing: PricingService | None = None,
        settings: BillingSettings | None = None,
        now: Callable[[], datetime] = local_now,
    ) -> None:
        self.session_factory = session_factory
        self.pricing = pricing or PricingService()
        self._settings = settings
        self.now = now

    def _invoices(self, db: Session) -> InvoiceService:
        return InvoiceService(db, pricing=self.pricing, now=self.now)

    def _snapshot(self, db: Session) -> BillingSettings:
        return self._settings or SettingsService(db).snapshot()

    def _skip_reason(self, contract: Contract) -> str | None:
        if contract.status in TERMINAL_CONTRACT_STATUSES:
            return "contract_closed"
        if contract.paid_in_full_at is not None:
            return "paid_in_full"
        if contract.billing_period != BillingPeriod.MONTHLY:
            return "not_monthly"
        return None

    def generate_monthly(self, contract_id: int, target: date) -> JobOutcome:
        target = start_of_month(target)
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            if contract is None:
                return JobOutcome.missing("contract", contract_id)
            reason = self._skip_reason(contract)
            if reason is not None:
                return JobOutcome.noop(reason, contract_id=contract_id)

            invoices = self._invoices(db)
            settings = self._snapshot(db)
            if invoices.count_for(contract.id) == 0:
                invoice = invoices.generate_initial_invoice(contract, settings)
                return JobOutcome.applied("initial_invoice", contract_id=contract_id, invoices=[invoice.id])

            latest = invoices.latest_billed(contract.id)
            if latest is not None:
                cursor = start_of_month(latest.period_end + timedelta(days=1))
            else:
                cursor = start_of_month(contract.start_date)
            contract_end = contract.end_date

        issued: list[int] = []
        while cursor <= target and cursor <= contract_end:
            invoice_id = self._issue_month(contract_id, cursor)
            if invoice_id is not None:
                issued.append(invoice_id)
            cursor = next_month_start(cursor)

        if not issued:
            return JobOutcome.noop("period_covered", contract_id=contract_id, target=format_month(target))
        return JobOutcome.applied("invoices_issued", contract_id=contract_id, invoices=issued)

    def _issue_month(self, contract_id: int, month: date) -> int | None:
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            if contract is None or self._skip_reason(contract) is not None:
                return None

            invoices = self._invoices(db)
            period_start = max(month, contract.start_date)
            period_end = min(end_of_month(month), contract.end_date)
            if invoices.has_overlap(contract.id, period_start, period_end):
                logger.debug(
                    "invoice.period_covered",
                    extra={
                        "event": "invoice.period_covered",
                        "contract_id": contract_id,
                        "month": format_month(month),
                    },
                )
                return None

            invoice = invoices.generate(contract, month, self._snapshot(db))
            return invoice.id if invoice is not None else None
