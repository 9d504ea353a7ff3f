"""Wall-clock helpers bound to the configured business timezone."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from rentcore.core.config import get_config

Clock = Callable[[], date]


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp helper."""
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    return datetime.now(ZoneInfo(get_config().TIMEZONE))


def today() -> date:
    """Business date in the configured timezone."""
    return local_now().date()
