from __future__ import annotations

from datetime import date

from rentcore.lifecycle.renewal import compute_term
from rentcore.models import BillingPeriod, Contract
from rentcore.services.contract_service import compute_end_date


def _contract(start, end, period):
    return Contract(start_date=start, end_date=end, billing_period=period, duration_count=1, rent_amount=1)


def test_monthly_term_is_rederived_from_dates():
    term = compute_term(_contract(date(2024, 1, 15), date(2024, 4, 14), BillingPeriod.MONTHLY))
    assert term.duration_count == 3
    assert term.start_date == date(2024, 4, 15)
    assert term.billing_period == BillingPeriod.MONTHLY


def test_weekly_and_daily_terms_round_up():
    weekly = compute_term(_contract(date(2024, 1, 1), date(2024, 1, 15), BillingPeriod.WEEKLY))
    daily = compute_term(_contract(date(2024, 1, 1), date(2024, 1, 5), BillingPeriod.DAILY))
    assert weekly.duration_count == 3
    assert daily.duration_count == 5
    assert daily.start_date == date(2024, 1, 6)


def test_short_monthly_term_renews_for_at_least_one_month():
    term = compute_term(_contract(date(2024, 1, 15), date(2024, 1, 31), BillingPeriod.MONTHLY))
    assert term.duration_count == 1


def test_end_dates_are_inclusive():
    assert compute_end_date(date(2024, 1, 15), BillingPeriod.MONTHLY, 3) == date(2024, 4, 14)
    assert compute_end_date(date(2024, 1, 31), BillingPeriod.MONTHLY, 1) == date(2024, 2, 28)
    assert compute_end_date(date(2024, 1, 1), BillingPeriod.WEEKLY, 2) == date(2024, 1, 14)
    assert compute_end_date(date(2024, 1, 30), BillingPeriod.DAILY, 3) == date(2024, 2, 1)
