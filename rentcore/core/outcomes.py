"""Handler outcome value returned to the job runner."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

APPLIED = "applied"
NOOP = "noop"
MISSING = "missing"
RESCHEDULED = "rescheduled"


@dataclass(frozen=True)
class JobOutcome:
    """Result of one handler invocation.

    Every status is a success from the runner's point of view; failures raise.
    """

    status: str
    detail: str | None = None
    countdown: int | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def applied(cls, detail: str | None = None, **data: Any) -> "JobOutcome":
        return cls(APPLIED, detail, data=data)

    @classmethod
    def noop(cls, detail: str, **data: Any) -> "JobOutcome":
        return cls(NOOP, detail, data=data)

    @classmethod
    def rescheduled(cls, countdown: int, detail: str = "rate_limited") -> "JobOutcome":
        return cls(RESCHEDULED, detail, countdown=countdown)

    @classmethod
    def missing(cls, entity: str, entity_id: int) -> "JobOutcome":
        event = f"{entity}.missing"
        logger.warning(event, extra={"event": event, "entity": entity, "entity_id": entity_id})
        return cls(MISSING, event, data={f"{entity}_id": entity_id})

    @property
    def is_applied(self) -> bool:
        return self.status == APPLIED

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status, "detail": self.detail}
        if self.countdown is not None:
            payload["countdown"] = self.countdown
        payload.update(self.data)
        return payload
