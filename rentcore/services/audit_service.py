"""Audit event recording that never blocks a financial transition."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from rentcore.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Writes audit rows inside a savepoint of the caller's transaction.

    A failing audit insert rolls back only its savepoint; the contract, room
    and invoice writes of the same transaction still commit.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        event: str,
        subject_type: str,
        subject_id: int,
        properties: dict[str, Any] | None = None,
        description: str | None = None,
        log_name: str = "contracts",
    ) -> AuditLog | None:
        try:
            with self.db.begin_nested():
                row = AuditLog(
                    log_name=log_name,
                    event=event,
                    subject_type=subject_type,
                    subject_id=subject_id,
                    properties=dict(properties or {}),
                    description=description,
                )
                self.db.add(row)
            return row
        except Exception:
            logger.exception(
                "audit.write_failed",
                extra={"event": "audit.write_failed", "audit_event": event, "subject_id": subject_id},
            )
            return None
