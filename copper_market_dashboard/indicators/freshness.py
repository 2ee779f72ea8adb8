"""Freshness filter: is an indicator's observation recent enough to show as live?"""

from datetime import date
from enum import Enum

from copper_market_dashboard.models import Indicator


class Horizon(str, Enum):
    """Analysis time frame an indicator's staleness is judged against."""

    SHORT = "short"  # ~1 week
    MEDIUM = "medium"  # ~1 month
    LONG = "long"  # ~3 months


# Max age in days (inclusive) by reporting frequency and horizon.
# Empirical values; changing them is a product decision.
FRESHNESS_THRESHOLDS: dict[str, dict[Horizon, int]] = {
    "daily": {Horizon.SHORT: 10, Horizon.MEDIUM: 21, Horizon.LONG: 45},
    "weekly": {Horizon.SHORT: 21, Horizon.MEDIUM: 45, Horizon.LONG: 60},
    "monthly": {Horizon.SHORT: 45, Horizon.MEDIUM: 75, Horizon.LONG: 140},
    "quarterly": {Horizon.SHORT: 120, Horizon.MEDIUM: 180, Horizon.LONG: 260},
    "other": {Horizon.SHORT: 30, Horizon.MEDIUM: 90, Horizon.LONG: 180},
}

DEFAULT_HORIZON = Horizon.LONG


def frequency_class(frequency: str) -> str:
    """Map a provider frequency label ("Daily, Close", "Quarterly", ...) to a table row."""
    freq = (frequency or "").lower()
    if "daily" in freq:
        return "daily"
    if "weekly" in freq:
        return "weekly"
    if "monthly" in freq:
        return "monthly"
    if "quarter" in freq:
        return "quarterly"
    return "other"


def max_age_days(frequency: str, horizon: Horizon | str = DEFAULT_HORIZON) -> int:
    return FRESHNESS_THRESHOLDS[frequency_class(frequency)][Horizon(horizon)]


def age_days(indicator: Indicator, today: date) -> int | None:
    """Whole days between the observation date and ``today``; None if unparsable."""
    try:
        observed = date.fromisoformat(indicator.date[:10])
    except (TypeError, ValueError):
        return None
    return (today - observed).days


def is_fresh(indicator: Indicator, horizon: Horizon | str, today: date) -> bool:
    """True when the observation is no older than its threshold. Unparsable dates are never fresh."""
    age = age_days(indicator, today)
    if age is None:
        return False
    return age <= max_age_days(indicator.frequency, horizon)


def partition_fresh(
    indicators: list[Indicator], horizon: Horizon | str, today: date
) -> tuple[list[Indicator], list[Indicator]]:
    """Split into (fresh, stale), each keeping input order."""
    fresh, stale = [], []
    for indicator in indicators:
        (fresh if is_fresh(indicator, horizon, today) else stale).append(indicator)
    return fresh, stale


def filter_fresh(
    indicators: list[Indicator], today: date, horizon: Horizon | str = DEFAULT_HORIZON
) -> list[Indicator]:
    return partition_fresh(indicators, horizon, today)[0]
