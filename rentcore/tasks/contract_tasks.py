"""Celery tasks for the per-contract lifecycle handlers."""

from __future__ import annotations

from typing import Any

from rentcore.core.schemas import ActivateJob, CancelOverdueJob, ContractJob, parse_job
from rentcore.lifecycle.jobs import ContractJobs
from rentcore.services.notification_service import DatabaseNotificationSender
from rentcore.tasks.celery_app import celery_app
from rentcore.tasks.hooks import run_handler


def contract_jobs() -> ContractJobs:
    return ContractJobs(notifier=DatabaseNotificationSender())


@celery_app.task(bind=True, name="contracts.activate")
def activate_contract(self, contract_id: int, as_of: str) -> dict[str, Any]:
    job = parse_job(ActivateJob, {"contract_id": contract_id, "as_of": as_of})
    outcome = run_handler(
        "contracts.activate",
        {"job_id": self.request.id, "contract_id": job.contract_id},
        lambda: contract_jobs().activate(job.contract_id, job.as_of),
    )
    return outcome.as_dict()


@celery_app.task(bind=True, name="contracts.mark_overdue")
def mark_contract_overdue(self, contract_id: int) -> dict[str, Any]:
    job = parse_job(ContractJob, {"contract_id": contract_id})
    outcome = run_handler(
        "contracts.mark_overdue",
        {"job_id": self.request.id, "contract_id": job.contract_id},
        lambda: contract_jobs().mark_overdue(job.contract_id),
    )
    return outcome.as_dict()


@celery_app.task(bind=True, name="contracts.cancel_overdue")
def cancel_overdue_contract(
    self,
    contract_id: int,
    reason: str,
    threshold: str,
    grace_days: int,
) -> dict[str, Any]:
    job = parse_job(
        CancelOverdueJob,
        {"contract_id": contract_id, "reason": reason, "threshold": threshold, "grace_days": grace_days},
    )
    outcome = run_handler(
        "contracts.cancel_overdue",
        {"job_id": self.request.id, "contract_id": job.contract_id},
        lambda: contract_jobs().cancel_overdue(job.contract_id, job.reason, job.threshold, job.grace_days),
    )
    return outcome.as_dict()


@celery_app.task(bind=True, name="contracts.complete_ended")
def complete_ended_contract(self, contract_id: int) -> dict[str, Any]:
    job = parse_job(ContractJob, {"contract_id": contract_id})
    outcome = run_handler(
        "contracts.complete_ended",
        {"job_id": self.request.id, "contract_id": job.contract_id},
        lambda: contract_jobs().complete_ended(job.contract_id),
    )
    return outcome.as_dict()


@celery_app.task(bind=True, name="contracts.auto_renew")
def auto_renew_contract(self, contract_id: int) -> dict[str, Any]:
    job = parse_job(ContractJob, {"contract_id": contract_id})
    outcome = run_handler(
        "contracts.auto_renew",
        {"job_id": self.request.id, "contract_id": job.contract_id},
        lambda: contract_jobs().auto_renew(job.contract_id),
    )
    return outcome.as_dict()
