from __future__ import annotations

from datetime import date

from rentcore.billing.pricing import PricingService, covers_whole_month, per_day_rate
from rentcore.models import BillingPeriod, Contract, ProrataCharging
from rentcore.services.settings_service import BillingSettings


def _contract(rent=3_000_000, period=BillingPeriod.MONTHLY, duration=1, deposit=0):
    return Contract(
        id=1,
        billing_period=period,
        duration_count=duration,
        start_date=date(2024, 1, 15),
        end_date=date(2024, 3, 14),
        rent_amount=rent,
        deposit_amount=deposit,
    )


def _prorated(mode, threshold=7):
    settings = BillingSettings(prorata_charging=mode, prorata_free_threshold_days=threshold)
    return PricingService().price_month(_contract(), date(2024, 1, 15), date(2024, 1, 31), settings)


def test_per_day_rate_uses_thirty_day_basis():
    assert per_day_rate(3_000_000) == 100_000
    assert per_day_rate(1_000_000) == 33_333


def test_whole_month_is_charged_as_rent():
    priced = PricingService().price_month(_contract(), date(2024, 2, 1), date(2024, 2, 29), BillingSettings())
    assert covers_whole_month(date(2024, 2, 1), date(2024, 2, 29))
    assert priced.amount == 3_000_000
    assert priced.line_items[0]["code"] == "RENT"
    assert priced.line_items[0]["meta"]["month"] == "2024-02"


def test_full_policy_charges_every_day():
    priced = _prorated(ProrataCharging.FULL)
    assert priced.amount == 17 * 100_000
    assert priced.line_items[0]["meta"]["free_days"] == 0


def test_free_policy_charges_nothing():
    priced = _prorated(ProrataCharging.FREE)
    assert priced.amount == 0
    assert priced.line_items[0]["meta"]["free_days"] == 17


def test_threshold_policy_waives_first_days():
    priced = _prorated(ProrataCharging.THRESHOLD, threshold=7)
    line = priced.line_items[0]
    assert priced.amount == 10 * 100_000
    assert line["meta"]["free_days"] == 7
    assert line["meta"]["qty"] == 10


def test_threshold_longer_than_period_waives_all():
    assert _prorated(ProrataCharging.THRESHOLD, threshold=40).amount == 0


def test_full_term_pricing_for_weekly_contract():
    priced = PricingService().price_full_term(_contract(rent=500_000, period=BillingPeriod.WEEKLY, duration=2))
    line = priced.line_items[0]
    assert priced.amount == 1_000_000
    assert line["meta"]["unit"] == "week"
    assert line["meta"]["qty"] == 2


def test_deposit_line_only_when_deposit_set():
    service = PricingService()
    assert service.deposit_line(_contract(deposit=0)) is None
    assert service.deposit_line(_contract(deposit=250_000))["amount"] == 250_000


def test_promotion_evaluator_can_adjust_lines():
    class HalfOff:
        def adjust(self, contract, line):
            return {**line, "amount": line["amount"] // 2, "promo": "HALF"}

    priced = PricingService(promotions=HalfOff()).price_month(
        _contract(), date(2024, 2, 1), date(2024, 2, 29), BillingSettings()
    )
    assert priced.amount == 1_500_000
    assert priced.line_items[0]["promo"] == "HALF"
