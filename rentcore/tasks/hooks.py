"""Lifecycle hooks for queue task execution."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from rentcore.core.logging import LogContext, build_log_event
from rentcore.core.outcomes import JobOutcome

logger = logging.getLogger(__name__)


def _context(task_key: str, context: dict[str, Any]) -> LogContext:
    def _str(key: str) -> str | None:
        value = context.get(key)
        return str(value) if value is not None else None

    return LogContext(
        job=task_key,
        job_id=_str("job_id"),
        contract_id=_str("contract_id"),
        invoice_id=_str("invoice_id"),
        payment_id=_str("payment_id"),
        trace_id=context.get("trace_id"),
    )


def before_task(task_key: str, context: dict[str, Any]) -> dict[str, Any]:
    """Build pre-task log payload."""
    return build_log_event(event="task.start", context=_context(task_key, context))


def after_task(task_key: str, context: dict[str, Any], status: str, **fields: Any) -> dict[str, Any]:
    """Build post-task log payload."""
    return build_log_event(
        event="task.finish",
        context=_context(task_key, context),
        status=status,
        finished_at=datetime.now(timezone.utc).isoformat(),
        **fields,
    )


def run_handler(
    task_key: str,
    context: dict[str, Any],
    handler: Callable[[], JobOutcome],
) -> JobOutcome:
    """Run a job handler between start/finish log events.

    Exceptions are logged and re-raised so the runner records the failure.
    """
    context = {"trace_id": uuid.uuid4().hex, **context}
    logger.info("task.start", extra=before_task(task_key, context))
    try:
        outcome = handler()
    except Exception as exc:
        logger.exception(
            "task.failed",
            extra=after_task(task_key, context, status="failed", error_type=exc.__class__.__name__),
        )
        raise
    logger.info("task.finish", extra=after_task(task_key, context, status=outcome.status, detail=outcome.detail))
    return outcome
