"""Celery beat entry points for the nightly sweeps."""

from __future__ import annotations

import logging
from typing import Any

from rentcore.tasks.celery_app import celery_app
from rentcore.tasks.sweeps import DEFAULT_CHUNK_SIZE, Sweeper
from rentcore.utils.dates import parse_month

logger = logging.getLogger(__name__)


def _log_start(name: str, task_id: str | None) -> None:
    logger.info("sweep.start", extra={"event": "sweep.start", "sweep": name, "job_id": task_id})


@celery_app.task(bind=True, name="sweeps.activate_due")
def sweep_activate_due(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
    _log_start("activate_due", self.request.id)
    return Sweeper().activate_due(chunk_size=chunk_size).as_dict()


@celery_app.task(bind=True, name="sweeps.mark_overdue")
def sweep_mark_overdue(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
    _log_start("mark_overdue", self.request.id)
    return Sweeper().mark_overdue(chunk_size=chunk_size).as_dict()


@celery_app.task(bind=True, name="sweeps.cancel_overdue")
def sweep_cancel_overdue(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
    _log_start("cancel_overdue", self.request.id)
    return Sweeper().cancel_overdue(chunk_size=chunk_size).as_dict()


@celery_app.task(bind=True, name="sweeps.complete_ended")
def sweep_complete_ended(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
    _log_start("complete_ended", self.request.id)
    return Sweeper().complete_ended(chunk_size=chunk_size).as_dict()


@celery_app.task(bind=True, name="sweeps.auto_renew_due")
def sweep_auto_renew_due(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
    _log_start("auto_renew_due", self.request.id)
    return Sweeper().auto_renew_due(chunk_size=chunk_size).as_dict()


@celery_app.task(bind=True, name="sweeps.generate_monthly")
def sweep_generate_monthly(self, target: str | None = None, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
    _log_start("generate_monthly", self.request.id)
    month = parse_month(target) if target else None
    return Sweeper().generate_monthly(target=month, chunk_size=chunk_size).as_dict()


@celery_app.task(bind=True, name="sweeps.sync_pending_payments")
def sweep_sync_pending_payments(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> dict[str, Any]:
    _log_start("sync_pending_payments", self.request.id)
    return Sweeper().sync_pending_payments(chunk_size=chunk_size).as_dict()
