from datetime import date, timedelta

import pytest

from copper_market_dashboard.indicators.freshness import (
    Horizon,
    filter_fresh,
    frequency_class,
    is_fresh,
    max_age_days,
    partition_fresh,
)
from copper_market_dashboard.models import Indicator


TODAY = date(2024, 3, 15)


def _indicator(id: str, frequency: str, age: int) -> Indicator:
    return Indicator(
        id=id,
        name=id,
        value="1",
        date=(TODAY - timedelta(days=age)).isoformat(),
        units="",
        frequency=frequency,
        source="FRED",
        last_updated="2024-03-15",
    )


@pytest.mark.parametrize(
    "frequency,expected",
    [
        ("Daily, Close", "daily"),
        ("Weekly, Ending Friday", "weekly"),
        ("Monthly", "monthly"),
        ("Quarterly", "quarterly"),
        ("Real-Time", "other"),
        ("", "other"),
    ],
)
def test_frequency_class(frequency: str, expected: str) -> None:
    assert frequency_class(frequency) == expected


@pytest.mark.parametrize("horizon", list(Horizon))
@pytest.mark.parametrize("frequency", ["Daily", "Weekly", "Monthly", "Quarterly"])
def test_boundary_is_inclusive(frequency: str, horizon: Horizon) -> None:
    limit = max_age_days(frequency, horizon)

    assert is_fresh(_indicator("x", frequency, limit), horizon, TODAY)
    assert not is_fresh(_indicator("x", frequency, limit + 1), horizon, TODAY)


def test_longer_horizon_never_stricter() -> None:
    for frequency in ("Daily", "Weekly", "Monthly", "Quarterly", "Other"):
        ages = [max_age_days(frequency, h) for h in (Horizon.SHORT, Horizon.MEDIUM, Horizon.LONG)]
        assert ages == sorted(ages)


def test_unparsable_date_is_stale() -> None:
    broken = Indicator("x", "x", "1", "not-a-date", "", "Daily", "FRED")
    assert not is_fresh(broken, Horizon.LONG, TODAY)


def test_monthly_45_days_old_depends_on_horizon() -> None:
    monthly = _indicator("CPIAUCSL", "Monthly", 45)

    assert is_fresh(monthly, Horizon.SHORT, TODAY)
    assert not is_fresh(_indicator("CPIAUCSL", "Monthly", 46), Horizon.SHORT, TODAY)
    assert is_fresh(_indicator("CPIAUCSL", "Monthly", 46), Horizon.MEDIUM, TODAY)


def test_partition_keeps_order() -> None:
    items = [
        _indicator("a", "Daily", 1),
        _indicator("b", "Daily", 400),
        _indicator("c", "Quarterly", 200),
    ]

    fresh, stale = partition_fresh(items, Horizon.LONG, TODAY)

    assert [i.id for i in fresh] == ["a", "c"]
    assert [i.id for i in stale] == ["b"]
    assert [i.id for i in filter_fresh(items, TODAY)] == ["a", "c"]
