"""Invoice service for issuing and summarizing contract invoices."""

from __future__ import annotations

import logging
import secrets
import string
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from rentcore.billing.pricing import PricedPeriod, PricingService
from rentcore.core.exceptions import InvoiceGenerationError
from rentcore.models.contract import Contract
from rentcore.models.enums import BillingPeriod, InvoiceStatus, PaymentStatus
from rentcore.models.invoice import Invoice, sum_line_items
from rentcore.models.payment import Payment
from rentcore.services.base_service import BaseService
from rentcore.services.settings_service import BillingSettings
from rentcore.utils.clock import local_now, utcnow
from rentcore.utils.dates import day_of_month, end_of_month, next_due_day_from, start_of_month

logger = logging.getLogger(__name__)

_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
_NUMBER_ATTEMPTS = 10


class InvoiceService(BaseService):
    """Issues invoices inside the caller's transaction (flush only)."""

    def __init__(
        self,
        db: Session | None = None,
        pricing: PricingService | None = None,
        now: Callable[[], datetime] = local_now,
    ) -> None:
        super().__init__(db)
        self.pricing = pricing or PricingService()
        self.now = now

    def get_invoice(self, invoice_id: int) -> Invoice | None:
        return self.db.query(Invoice).filter(Invoice.id == invoice_id).first()

    def make_number(self, period_start: date) -> str:
        """Return a fresh ``INV-YYYYMM-XXXXXX`` number."""
        prefix = f"INV-{period_start:%Y%m}-"
        for _ in range(_NUMBER_ATTEMPTS):
            candidate = prefix + "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(6))
            taken = self.db.query(Invoice.id).filter(Invoice.number == candidate).first()
            if taken is None:
                return candidate
        raise InvoiceGenerationError(f"could not allocate a unique invoice number for {prefix}")

    def has_overlap(
        self,
        contract_id: int,
        period_start: date,
        period_end: date,
        exclude_invoice_id: int | None = None,
    ) -> bool:
        """True when a non-cancelled invoice of the contract intersects the period."""
        query = self.db.query(Invoice.id).filter(
            Invoice.contract_id == contract_id,
            Invoice.status != InvoiceStatus.CANCELLED,
            Invoice.period_start <= period_end,
            Invoice.period_end >= period_start,
        )
        if exclude_invoice_id is not None:
            query = query.filter(Invoice.id != exclude_invoice_id)
        return query.first() is not None

    def latest_billed(self, contract_id: int) -> Invoice | None:
        return (
            self.db.query(Invoice)
            .filter(Invoice.contract_id == contract_id, Invoice.status != InvoiceStatus.CANCELLED)
            .order_by(Invoice.period_end.desc(), Invoice.id.desc())
            .first()
        )

    def count_for(self, contract_id: int) -> int:
        return self.db.query(Invoice).filter(Invoice.contract_id == contract_id).count()

    def totals(self, invoice: Invoice) -> dict[str, int]:
        paid = sum(
            payment.amount
            for payment in self.db.query(Payment)
            .filter(Payment.invoice_id == invoice.id, Payment.status == PaymentStatus.COMPLETED)
            .all()
        )
        return {
            "amount": invoice.amount,
            "paid": paid,
            "outstanding": invoice.amount - paid,
        }

    def monthly_due_date(self, period_start: date, settings: BillingSettings) -> date:
        today = self.now().date()
        candidate = day_of_month(period_start, settings.due_day_of_month)
        if candidate < today:
            return next_due_day_from(today, settings.due_day_of_month)
        return candidate

    def initial_due_date(self, settings: BillingSettings) -> date:
        return (self.now() + timedelta(hours=settings.invoice_due_hours)).date()

    def generate(self, contract: Contract, month: date, settings: BillingSettings) -> Invoice | None:
        """Issue the monthly invoice for ``month``; ``None`` when the month is already covered."""
        if contract.billing_period != BillingPeriod.MONTHLY:
            raise InvoiceGenerationError(f"contract {contract.id} is not billed monthly")

        period_start = max(start_of_month(month), contract.start_date)
        period_end = min(end_of_month(month), contract.end_date)
        if period_start > period_end:
            return None
        if self.has_overlap(contract.id, period_start, period_end):
            return None

        priced = self.pricing.price_month(contract, period_start, period_end, settings)
        return self._issue(contract, priced, self.monthly_due_date(period_start, settings))

    def generate_initial_invoice(self, contract: Contract, settings: BillingSettings) -> Invoice:
        """First invoice of a contract: first period (or whole term) plus deposit."""
        if contract.billing_period == BillingPeriod.MONTHLY:
            period_start = contract.start_date
            period_end = min(end_of_month(period_start), contract.end_date)
            priced = self.pricing.price_month(contract, period_start, period_end, settings)
        else:
            priced = self.pricing.price_full_term(contract)

        if self.has_overlap(contract.id, priced.period_start, priced.period_end):
            raise InvoiceGenerationError(f"contract {contract.id} already has an invoice for its first period")

        items = list(priced.line_items)
        deposit = self.pricing.deposit_line(contract)
        if deposit is not None:
            items.append(deposit)
        return self._issue(
            contract,
            PricedPeriod(priced.period_start, priced.period_end, items),
            self.initial_due_date(settings),
        )

    def _issue(self, contract: Contract, priced: PricedPeriod, due_date: date) -> Invoice:
        items: list[dict[str, Any]] = [dict(item) for item in priced.line_items]
        amount = sum_line_items(items)
        invoice = Invoice(
            contract_id=contract.id,
            number=self.make_number(priced.period_start),
            period_start=priced.period_start,
            period_end=priced.period_end,
            due_date=due_date,
            amount=amount,
            outstanding_amount=amount,
            status=InvoiceStatus.PENDING if amount > 0 else InvoiceStatus.PAID,
            line_items=items,
            paid_at=None if amount > 0 else utcnow(),
        )
        self.db.add(invoice)
        self.db.flush()
        logger.info(
            "invoice.issued",
            extra={
                "event": "invoice.issued",
                "contract_id": contract.id,
                "invoice_id": invoice.id,
                "number": invoice.number,
                "period_start": priced.period_start.isoformat(),
                "period_end": priced.period_end.isoformat(),
                "amount": amount,
            },
        )
        return invoice
