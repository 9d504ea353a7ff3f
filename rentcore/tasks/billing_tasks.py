"""Celery task for monthly invoice generation."""

from __future__ import annotations

from typing import Any

from rentcore.billing.invoice_generator import InvoiceGenerator
from rentcore.core.schemas import GenerateMonthlyJob, parse_job
from rentcore.tasks.celery_app import celery_app
from rentcore.tasks.hooks import run_handler


@celery_app.task(bind=True, name="billing.generate_monthly")
def generate_monthly_invoices(self, contract_id: int, target: str) -> dict[str, Any]:
    job = parse_job(GenerateMonthlyJob, {"contract_id": contract_id, "target": target})
    outcome = run_handler(
        "billing.generate_monthly",
        {"job_id": self.request.id, "contract_id": job.contract_id},
        lambda: InvoiceGenerator().generate_monthly(job.contract_id, job.target_start),
    )
    return outcome.as_dict()
