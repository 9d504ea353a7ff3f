"""Structured logging helpers for lifecycle and billing jobs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class LogContext:
    """Normalized context fields expected in structured job logs."""

    job: str | None = None
    job_id: str | None = None
    contract_id: str | None = None
    invoice_id: str | None = None
    payment_id: str | None = None
    trace_id: str | None = None


def build_log_event(event: str, context: LogContext, **fields: Any) -> dict[str, Any]:
    """Build a normalized structured log payload."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "job": context.job,
        "job_id": context.job_id,
        "contract_id": context.contract_id,
        "invoice_id": context.invoice_id,
        "payment_id": context.payment_id,
        "trace_id": context.trace_id,
    }
    payload.update(fields)
    return payload
