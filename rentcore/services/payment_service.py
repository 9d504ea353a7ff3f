"""Payment service: submission, voiding and invoice recalculation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from rentcore.core.exceptions import ValidationError
from rentcore.lifecycle.state_machine import ContractEvent, ContractStateMachine, TransitionContext, TransitionResult
from rentcore.models.contract import Contract
from rentcore.models.enums import PAYABLE_INVOICE_STATUSES, InvoiceStatus, PaymentMethod, PaymentStatus
from rentcore.models.invoice import Invoice
from rentcore.models.payment import Payment
from rentcore.services.audit_service import AuditService
from rentcore.services.base_service import BaseService
from rentcore.services.settings_service import BillingSettings
from rentcore.utils.clock import today as business_today
from rentcore.utils.clock import utcnow

logger = logging.getLogger(__name__)

OPEN_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.REVIEW)
_GATEWAY_METHODS = (PaymentMethod.GATEWAY, PaymentMethod.VIRTUAL_ACCOUNT)

# Events tried, in order, once an invoice becomes fully paid.
SETTLEMENT_EVENTS = (
    ContractEvent.CONFIRM_PAYMENT,
    ContractEvent.ACTIVATE,
    ContractEvent.RESOLVE_OVERDUE,
)


class PaymentService(BaseService):
    """Payment operations that run inside the caller's transaction."""

    def __init__(
        self,
        db: Session | None = None,
        settings: BillingSettings | None = None,
        machine: ContractStateMachine | None = None,
        today: Callable[[], date] = business_today,
    ) -> None:
        super().__init__(db)
        self.settings = settings or BillingSettings()
        self.machine = machine or ContractStateMachine()
        self.today = today

    def create_payment(self, invoice: Invoice, data: dict[str, Any], user_id: int | None = None) -> Payment:
        """Record a payment submission against a payable invoice."""
        if invoice.status not in PAYABLE_INVOICE_STATUSES:
            raise ValidationError(f"invoice {invoice.id} is not payable (status={invoice.status.value})")

        try:
            method = PaymentMethod(data.get("method", PaymentMethod.TRANSFER.value))
        except ValueError as exc:
            raise ValidationError(f"unknown payment method: {data.get('method')!r}") from exc

        amount = int(data.get("amount") or invoice.outstanding_amount)
        if amount <= 0:
            raise ValidationError("payment amount must be positive")

        payment = Payment(
            invoice_id=invoice.id,
            method=method,
            status=PaymentStatus.PENDING if method in _GATEWAY_METHODS else PaymentStatus.REVIEW,
            amount=amount,
            provider=data.get("provider") or ("midtrans" if method in _GATEWAY_METHODS else None),
            reference=data.get("reference"),
            meta=dict(data.get("meta") or {}),
        )
        self.db.add(payment)
        self.db.flush()

        AuditService(self.db).record(
            event="payment_created",
            subject_type="payment",
            subject_id=payment.id,
            properties={"invoice_id": invoice.id, "method": method.value, "amount": amount, "user_id": user_id},
            log_name="payments",
        )
        return payment

    def void_payment(self, payment: Payment, reason: str, user_id: int | None = None) -> bool:
        if payment.status not in OPEN_PAYMENT_STATUSES:
            return False
        payment.status = PaymentStatus.CANCELLED
        meta = dict(payment.meta or {})
        meta["void_reason"] = reason
        payment.meta = meta
        AuditService(self.db).record(
            event="payment_voided",
            subject_type="payment",
            subject_id=payment.id,
            properties={"reason": reason, "user_id": user_id},
            log_name="payments",
        )
        return True

    def void_pending_payments_for_invoice(
        self,
        invoice: Invoice,
        provider: str | None = None,
        reason: str = "superseded",
        user_id: int | None = None,
    ) -> int:
        """Cancel open payments of an invoice, optionally only those of one provider."""
        query = self.db.query(Payment).filter(
            Payment.invoice_id == invoice.id,
            Payment.status.in_(OPEN_PAYMENT_STATUSES),
        )
        if provider is not None:
            query = query.filter(Payment.provider == provider)
        voided = 0
        for payment in query.all():
            if self.void_payment(payment, reason, user_id):
                voided += 1
        self.db.flush()
        return voided

    def review_payment(self, payment: Payment, approve: bool, user_id: int | None = None) -> Payment:
        """Staff decision on a manually submitted payment."""
        if payment.status != PaymentStatus.REVIEW:
            raise ValidationError(f"payment {payment.id} is not awaiting review")
        if approve:
            payment.status = PaymentStatus.COMPLETED
            payment.paid_at = utcnow()
        else:
            payment.status = PaymentStatus.REJECTED
        AuditService(self.db).record(
            event="payment_approved" if approve else "payment_rejected",
            subject_type="payment",
            subject_id=payment.id,
            properties={"user_id": user_id},
            log_name="payments",
        )
        self.db.flush()
        self.recalculate_invoice(payment.invoice)
        return payment

    def recalculate_invoice(self, invoice: Invoice) -> Invoice:
        """Derive invoice status from its completed payments."""
        if invoice.status == InvoiceStatus.CANCELLED:
            return invoice

        completed = (
            self.db.query(Payment)
            .filter(Payment.invoice_id == invoice.id, Payment.status == PaymentStatus.COMPLETED)
            .order_by(Payment.id)
            .all()
        )
        paid = sum(payment.amount for payment in completed)
        outstanding = invoice.amount - paid
        invoice.outstanding_amount = max(0, outstanding)

        if outstanding < 0:
            logger.warning(
                "invoice.overpaid",
                extra={
                    "event": "invoice.overpaid",
                    "invoice_id": invoice.id,
                    "amount": invoice.amount,
                    "paid": paid,
                },
            )
            AuditService(self.db).record(
                event="invoice_overpaid",
                subject_type="invoice",
                subject_id=invoice.id,
                properties={"amount": invoice.amount, "paid": paid, "excess": -outstanding},
                log_name="payments",
            )

        if outstanding <= 0:
            newly_paid = invoice.status != InvoiceStatus.PAID
            invoice.status = InvoiceStatus.PAID
            paid_times = [payment.paid_at for payment in completed if payment.paid_at is not None]
            invoice.paid_at = (
                max(paid_times, key=lambda value: value.replace(tzinfo=None))
                if paid_times
                else (invoice.paid_at or utcnow())
            )
            self.db.flush()
            if newly_paid:
                self.settle_contract(invoice.contract)
            return invoice

        invoice.status = InvoiceStatus.OVERDUE if invoice.due_date < self.today() else InvoiceStatus.PENDING
        invoice.paid_at = None
        self.db.flush()
        return invoice

    def settle_contract(self, contract: Contract) -> list[TransitionResult]:
        """Advance a contract after one of its invoices became fully paid."""
        ctx = TransitionContext(as_of=self.today(), settings=self.settings, cause="payment")
        results = [self.machine.apply(self.db, contract, event, ctx) for event in SETTLEMENT_EVENTS]
        self._mark_paid_in_full(contract)
        return [result for result in results if result.applied]

    def _mark_paid_in_full(self, contract: Contract) -> None:
        if contract.paid_in_full_at is not None:
            return
        invoices = (
            self.db.query(Invoice)
            .filter(Invoice.contract_id == contract.id, Invoice.status != InvoiceStatus.CANCELLED)
            .all()
        )
        if not invoices or any(invoice.status != InvoiceStatus.PAID for invoice in invoices):
            return
        if max(invoice.period_end for invoice in invoices) < contract.end_date:
            return
        contract.paid_in_full_at = utcnow()
        self.db.flush()
