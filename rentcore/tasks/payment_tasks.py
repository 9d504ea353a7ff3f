"""Celery task polling the payment gateway for one payment."""

from __future__ import annotations

import logging
from typing import Any

from rentcore.core.outcomes import RESCHEDULED
from rentcore.core.schemas import SyncPaymentJob, parse_job
from rentcore.payments.gateway import MidtransGateway
from rentcore.payments.rate_limiter import RedisCounter
from rentcore.payments.reconciler import PaymentReconciler
from rentcore.services.notification_service import DatabaseNotificationSender
from rentcore.tasks.celery_app import celery_app
from rentcore.tasks.hooks import run_handler

logger = logging.getLogger(__name__)


def payment_reconciler() -> PaymentReconciler:
    return PaymentReconciler(
        gateway=MidtransGateway(),
        counter=RedisCounter(),
        notifier=DatabaseNotificationSender(),
    )


@celery_app.task(bind=True, name="payments.sync")
def sync_payment(self, payment_id: int) -> dict[str, Any]:
    job = parse_job(SyncPaymentJob, {"payment_id": payment_id})
    outcome = run_handler(
        "payments.sync",
        {"job_id": self.request.id, "payment_id": job.payment_id},
        lambda: payment_reconciler().sync(job.payment_id),
    )
    if outcome.status == RESCHEDULED:
        self.apply_async(kwargs={"payment_id": job.payment_id}, countdown=outcome.countdown)
        logger.info(
            "payments.sync.requeued",
            extra={"event": "payments.sync.requeued", "payment_id": job.payment_id, "countdown": outcome.countdown},
        )
    return outcome.as_dict()
