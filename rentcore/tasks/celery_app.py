"""Celery application bootstrap."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging, worker_process_init

from rentcore.core.config import get_config
from rentcore.core.logging_config import configure_logging
from rentcore.database.db import verify_database_connection

config = get_config()

celery_app = Celery(
    "rentcore",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
    include=[
        "rentcore.tasks.contract_tasks",
        "rentcore.tasks.billing_tasks",
        "rentcore.tasks.payment_tasks",
        "rentcore.tasks.sweep_tasks",
    ],
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=config.TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    # Redelivery after a worker crash; every handler is idempotent.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue="contracts",
    task_routes={
        "contracts.*": {"queue": "contracts"},
        "billing.*": {"queue": "billing"},
        "payments.*": {"queue": "payments"},
        "sweeps.*": {"queue": "contracts"},
    },
    beat_schedule={
        "sweeps-activate-due": {"task": "sweeps.activate_due", "schedule": crontab(hour=0, minute=5)},
        "sweeps-mark-overdue": {"task": "sweeps.mark_overdue", "schedule": crontab(hour=0, minute=15)},
        "sweeps-cancel-overdue": {"task": "sweeps.cancel_overdue", "schedule": crontab(hour=0, minute=30)},
        "sweeps-auto-renew-due": {"task": "sweeps.auto_renew_due", "schedule": crontab(hour=0, minute=45)},
        "sweeps-complete-ended": {"task": "sweeps.complete_ended", "schedule": crontab(hour=1, minute=0)},
        "sweeps-generate-monthly": {"task": "sweeps.generate_monthly", "schedule": crontab(hour=1, minute=30)},
        "sweeps-sync-pending-payments": {"task": "sweeps.sync_pending_payments", "schedule": crontab(minute="*/10")},
    },
)

# Local/dev convenience: run tasks synchronously when requested.
if os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() in {"1", "true", "yes", "on"}:
    celery_app.conf.task_always_eager = True


@setup_logging.connect
def _configure_worker_logging(**_kwargs) -> None:
    configure_logging()


@worker_process_init.connect
def _check_database(**_kwargs) -> None:
    if not verify_database_connection() and config.DB_CONNECTIVITY_REQUIRED:
        raise RuntimeError("database is unreachable and DB_CONNECTIVITY_REQUIRED is set")
