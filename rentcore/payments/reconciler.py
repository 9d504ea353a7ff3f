"""Reconciles gateway payments by polling the provider for their status."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from rentcore.core.outcomes import JobOutcome
from rentcore.database.db import session_scope
from rentcore.database.queries import lock_contract, lock_invoice, lock_payment
from rentcore.models.enums import PaymentStatus
from rentcore.models.payment import Payment
from rentcore.payments.gateway import PROVIDER, PaymentGateway, parse_gateway_time
from rentcore.payments.rate_limiter import FixedWindowRateLimiter, SharedCounter
from rentcore.services.notification_service import NotificationSender, payment_url, safe_notify
from rentcore.services.payment_service import PaymentService
from rentcore.services.settings_service import BillingSettings, SettingsService
from rentcore.utils.clock import today as business_today
from rentcore.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Raw poll payloads kept per payment; older entries are dropped first.
POLL_HISTORY_LIMIT = 20

_SETTLED_STATUSES = (PaymentStatus.COMPLETED,)
_UNSUCCESSFUL_STATUSES = (PaymentStatus.FAILED, PaymentStatus.REJECTED)


def resolve_order_id(payment: Payment) -> str:
    midtrans_meta = (payment.meta or {}).get("midtrans") or {}
    return payment.reference or midtrans_meta.get("order_id") or f"PAY-{payment.id}"


@dataclass(frozen=True)
class _Notice:
    user_id: int
    payment_id: int
    status: PaymentStatus


class PaymentReconciler:
    """Handler behind the ``payments.sync`` task."""

    def __init__(
        self,
        gateway: PaymentGateway,
        counter: SharedCounter,
        session_factory: sessionmaker[Session] | None = None,
        notifier: NotificationSender | None = None,
        settings: BillingSettings | None = None,
        today: Callable[[], date] = business_today,
    ) -> None:
        self.gateway = gateway
        self.counter = counter
        self.session_factory = session_factory
        self.notifier = notifier
        self._settings = settings
        self.today = today

    def _snapshot(self, db: Session) -> BillingSettings:
        return self._settings or SettingsService(db).snapshot()

    def sync(self, payment_id: int) -> JobOutcome:
        """Poll the gateway for one payment and apply what it reports.

        The gateway is called with no transaction open. The write phase then
        locks contract, invoice and payment in that order, the same order the
        lifecycle handlers use, and re-checks the payment under the lock.
        """
        with session_scope(self.session_factory) as db:
            payment = db.get(Payment, payment_id)
            if payment is None:
                return JobOutcome.missing("payment", payment_id)
            skipped = self._skip_reason(payment)
            if skipped is not None:
                return JobOutcome.noop(skipped, payment_id=payment_id)

            settings = self._snapshot(db)
            limiter = FixedWindowRateLimiter(
                self.counter,
                max_attempts=settings.poll_max_attempts,
                window_seconds=settings.poll_window_seconds,
                min_delay_seconds=settings.poll_min_delay_seconds,
            )
            decision = limiter.attempt()
            if not decision.allowed:
                return JobOutcome.rescheduled(decision.retry_after)

            order_id = resolve_order_id(payment)
            invoice_id = payment.invoice_id
            contract_id = payment.invoice.contract_id

        raw = self.gateway.fetch_status(order_id)
        mapped = self.gateway.map_status(raw)

        notice = None
        with session_scope(self.session_factory) as db:
            contract = lock_contract(db, contract_id)
            invoice = lock_invoice(db, invoice_id)
            payment = lock_payment(db, payment_id)
            if payment is None:
                return JobOutcome.missing("payment", payment_id)
            skipped = self._skip_reason(payment)
            if skipped is not None:
                return JobOutcome.noop(skipped, payment_id=payment_id)

            previous = payment.status
            status = mapped.status
            if previous == PaymentStatus.COMPLETED and status != PaymentStatus.COMPLETED:
                # A poll never un-settles a completed payment.
                logger.warning(
                    "payments.sync.downgrade_ignored",
                    extra={
                        "event": "payments.sync.downgrade_ignored",
                        "payment_id": payment_id,
                        "gateway_status": status.value,
                    },
                )
                status = previous
            self._apply_status(payment, status, mapped.paid_at, raw)
            self._record_poll(payment, order_id, raw, status)
            db.flush()

            if invoice is not None:
                PaymentService(db, settings=settings, today=self.today).recalculate_invoice(invoice)

            logger.info(
                "payments.sync.polled",
                extra={
                    "event": "payments.sync.polled",
                    "payment_id": payment_id,
                    "order_id": order_id,
                    "from_status": previous.value,
                    "to_status": payment.status.value,
                },
            )
            if payment.status != previous and payment.status in (*_SETTLED_STATUSES, *_UNSUCCESSFUL_STATUSES):
                tenant_id = contract.tenant_id if contract is not None else None
                if tenant_id:
                    notice = _Notice(tenant_id, payment.id, payment.status)
            changed = payment.status != previous

        self._deliver(notice)
        if not changed:
            return JobOutcome.noop("status_unchanged", payment_id=payment_id)
        return JobOutcome.applied("status_updated", payment_id=payment_id)

    def _skip_reason(self, payment: Payment) -> str | None:
        if payment.status == PaymentStatus.CANCELLED:
            return "payment_cancelled"
        if payment.provider != PROVIDER:
            return "foreign_provider"
        return None

    def _apply_status(
        self,
        payment: Payment,
        status: PaymentStatus,
        paid_at: datetime | None,
        raw: dict[str, Any],
    ) -> None:
        payment.status = status
        if paid_at is not None and payment.paid_at is None:
            payment.paid_at = paid_at

        va_numbers = raw.get("va_numbers") or []
        va_number = None
        if va_numbers and isinstance(va_numbers[0], dict):
            va_number = va_numbers[0].get("va_number")
        va_number = va_number or raw.get("permata_va_number")
        if va_number:
            payment.virtual_account_number = str(va_number)
        expiry = parse_gateway_time(raw.get("expiry_time"))
        if expiry is not None:
            payment.virtual_account_expiry = expiry

    def _record_poll(self, payment: Payment, order_id: str, raw: dict[str, Any], status: PaymentStatus) -> None:
        meta = dict(payment.meta or {})
        midtrans = dict(meta.get("midtrans") or {})
        polls = list(midtrans.get("polls") or [])
        polls.append({"at": utcnow().isoformat(), "payload": raw})
        midtrans["polls"] = polls[-POLL_HISTORY_LIMIT:]
        midtrans["order_id"] = midtrans.get("order_id") or order_id
        midtrans["last_status"] = status.value
        midtrans["last_poll"] = utcnow().isoformat()
        meta["midtrans"] = midtrans
        payment.meta = meta

    def _deliver(self, notice: _Notice | None) -> None:
        if notice is None:
            return
        if notice.status == PaymentStatus.COMPLETED:
            title, message = "Payment received", "Your payment has been confirmed. Thank you."
        else:
            title, message = "Payment failed", "Your payment could not be completed. Please try again."
        safe_notify(
            self.notifier,
            notice.user_id,
            title,
            message,
            payment_url(notice.payment_id),
            {"type": "payment", "event": notice.status.value, "payment_id": str(notice.payment_id)},
        )
