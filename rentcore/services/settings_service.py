"""Runtime settings source and the per-invocation settings snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import select

from rentcore.core.exceptions import ConfigurationError
from rentcore.models.app_setting import AppSetting
from rentcore.models.enums import ProrataCharging
from rentcore.services.base_service import BaseService

logger = logging.getLogger(__name__)


class SettingsSource(Protocol):
    def read(self, key: str, default: Any = None) -> Any: ...


class SettingsService(BaseService):
    """Read tunables from the ``app_settings`` table."""

    def read(self, key: str, default: Any = None) -> Any:
        row = self.db.execute(select(AppSetting).where(AppSetting.key == key)).scalar_one_or_none()
        if row is None or row.value is None:
            return default
        return row.value

    def write(self, key: str, value: Any) -> None:
        row = self.db.execute(select(AppSetting).where(AppSetting.key == key)).scalar_one_or_none()
        if row is None:
            self.db.add(AppSetting(key=key, value=value))
        else:
            row.value = value
        self.db.flush()

    def snapshot(self) -> "BillingSettings":
        return BillingSettings.from_source(self)


class StaticSettingsSource:
    """Dictionary-backed source for scripts and tests."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self._values = dict(values or {})

    def read(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)


def _as_int(source: SettingsSource, key: str, default: int, minimum: int = 0) -> int:
    raw = source.read(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"setting {key} must be an integer, got {raw!r}") from exc
    return max(minimum, value)


def _as_bool(source: SettingsSource, key: str, default: bool) -> bool:
    raw = source.read(key, default)
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    return bool(raw)


@dataclass(frozen=True)
class BillingSettings:
    """Immutable snapshot of runtime tunables taken once per job invocation."""

    grace_days: int = 7
    auto_renew_lead_days: int = 7
    deposit_renewal_rollover: bool = True
    prorata_charging: ProrataCharging = ProrataCharging.FULL
    prorata_free_threshold_days: int = 7
    due_day_of_month: int = 7
    invoice_due_hours: int = 48
    require_ack_for_activate: bool = False
    require_ack_for_complete: bool = False
    poll_max_attempts: int = 30
    poll_window_seconds: int = 60
    poll_min_delay_seconds: int = 5

    @classmethod
    def from_source(cls, source: SettingsSource) -> "BillingSettings":
        raw_mode = str(source.read("billing.prorata_charging", ProrataCharging.FULL.value)).strip().lower()
        try:
            mode = ProrataCharging(raw_mode)
        except ValueError:
            logger.warning(
                "settings.prorata_charging.invalid",
                extra={"event": "settings.prorata_charging.invalid", "value": raw_mode},
            )
            mode = ProrataCharging.FULL

        return cls(
            grace_days=_as_int(source, "contract.grace_days", 7),
            auto_renew_lead_days=_as_int(source, "contract.auto_renew_lead_days", 7, minimum=1),
            deposit_renewal_rollover=_as_bool(source, "billing.deposit_renewal_rollover", True),
            prorata_charging=mode,
            prorata_free_threshold_days=_as_int(source, "billing.prorata_free_threshold_days", 7),
            due_day_of_month=min(31, _as_int(source, "billing.due_day_of_month", 7, minimum=1)),
            invoice_due_hours=_as_int(source, "contract.invoice_due_hours", 48, minimum=1),
            require_ack_for_activate=_as_bool(source, "handover.require_tenant_ack_for_activate", False),
            require_ack_for_complete=_as_bool(source, "handover.require_tenant_ack_for_complete", False),
            poll_max_attempts=_as_int(source, "payments.poll_max_attempts", 30, minimum=1),
            poll_window_seconds=_as_int(source, "payments.poll_window_seconds", 60, minimum=1),
            poll_min_delay_seconds=_as_int(source, "payments.poll_min_delay_seconds", 5, minimum=1),
        )
