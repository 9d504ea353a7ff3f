"""Invoice line pricing, including prorated partial months."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

from rentcore.models.contract import Contract
from rentcore.models.enums import BillingPeriod, ProrataCharging
from rentcore.models.invoice import make_line_item, sum_line_items
from rentcore.services.settings_service import BillingSettings
from rentcore.utils.dates import days_in_month, days_inclusive, end_of_month, format_month, start_of_month


# Prorated days are charged against a 30-day month regardless of the calendar.
PRORATA_DAYS_BASIS = 30


class PromotionEvaluator(Protocol):
    def adjust(self, contract: Contract, line: dict[str, Any]) -> dict[str, Any]: ...


class NoPromotions:
    """Default evaluator: lines pass through unchanged."""

    def adjust(self, contract: Contract, line: dict[str, Any]) -> dict[str, Any]:
        return line


@dataclass(frozen=True)
class PricedPeriod:
    period_start: date
    period_end: date
    line_items: list[dict[str, Any]] = field(default_factory=list)

    @property
    def amount(self) -> int:
        return sum_line_items(self.line_items)


def per_day_rate(monthly_rent: int) -> int:
    return int(round(monthly_rent / PRORATA_DAYS_BASIS))


def covers_whole_month(period_start: date, period_end: date) -> bool:
    return period_start == start_of_month(period_start) and period_end == end_of_month(period_start)


class PricingService:
    """Turns billing periods into invoice line items."""

    def __init__(self, promotions: PromotionEvaluator | None = None) -> None:
        self.promotions = promotions or NoPromotions()

    def price_month(
        self,
        contract: Contract,
        period_start: date,
        period_end: date,
        settings: BillingSettings,
    ) -> PricedPeriod:
        """Price one monthly billing period (a calendar month clipped to the term)."""
        if covers_whole_month(period_start, period_end):
            line = make_line_item(
                "RENT",
                "Rent",
                contract.rent_amount,
                {
                    "unit": "month",
                    "qty": 1,
                    "unit_price": contract.rent_amount,
                    "month": format_month(period_start),
                },
            )
        else:
            line = self._prorata_line(contract, period_start, period_end, settings)
        return PricedPeriod(period_start, period_end, [self.promotions.adjust(contract, line)])

    def price_full_term(self, contract: Contract) -> PricedPeriod:
        """Single line covering a whole daily or weekly contract."""
        unit = "day" if contract.billing_period == BillingPeriod.DAILY else "week"
        qty = max(1, contract.duration_count)
        line = make_line_item(
            "RENT",
            "Rent",
            contract.rent_amount * qty,
            {"unit": unit, "qty": qty, "unit_price": contract.rent_amount},
        )
        return PricedPeriod(
            contract.start_date,
            contract.end_date,
            [self.promotions.adjust(contract, line)],
        )

    def deposit_line(self, contract: Contract) -> dict[str, Any] | None:
        if contract.deposit_amount <= 0:
            return None
        return make_line_item("DEPOSIT", "Security Deposit", contract.deposit_amount)

    def _prorata_line(
        self,
        contract: Contract,
        period_start: date,
        period_end: date,
        settings: BillingSettings,
    ) -> dict[str, Any]:
        total_days = days_inclusive(period_start, period_end)
        rate = per_day_rate(contract.rent_amount)
        billable_days = total_days
        free_days = 0

        if settings.prorata_charging == ProrataCharging.FREE:
            billable_days = 0
            free_days = total_days
        elif settings.prorata_charging == ProrataCharging.THRESHOLD:
            free_days = min(total_days, settings.prorata_free_threshold_days)
            billable_days = total_days - free_days

        return make_line_item(
            "PRORATA",
            "Prorated Rent",
            rate * billable_days,
            {
                "unit": "day",
                "days": total_days,
                "month_days": days_in_month(period_start),
                "free_days": free_days,
                "qty": billable_days,
                "unit_price": rate if billable_days else 0,
                "date_start": period_start.isoformat(),
                "date_end": period_end.isoformat(),
                "policy": settings.prorata_charging.value,
            },
        )
