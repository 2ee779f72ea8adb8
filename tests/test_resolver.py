from dataclasses import replace

from copper_market_dashboard.indicators.resolver import (
    CACHED,
    CSV,
    LIVE,
    NO_METALS_KEY,
    PLANS,
    SUBSTITUTE,
    ResolveContext,
    plans_for_mode,
    resolve,
    resolve_all,
    with_change_from,
)
from copper_market_dashboard.models import Indicator


def _ind(id: str, value: str, date: str, source: str, units: str = "JPY/USD", **kwargs) -> Indicator:
    return Indicator(
        id=id,
        name=kwargs.pop("name", id),
        value=value,
        date=date,
        units=units,
        frequency="Daily",
        source=source,
        last_updated=date,
        **kwargs,
    )


def _plan(id: str):
    return next(p for p in PLANS if p.id == id)


def test_live_metals_wins_over_alpha_and_cache() -> None:
    ctx = ResolveContext(
        fetched={
            "metals:usd_jpy": _ind("usd_jpy", "150", "2024-03-15", "Metals.dev"),
            "alpha:usd_jpy": _ind("usd_jpy", "149", "2024-03-14", "Alpha Vantage"),
        },
        cached={"usd_jpy": _ind("usd_jpy", "148", "2024-03-13", "Metals.dev")},
    )

    resolution = resolve(_plan("usd_jpy"), ctx)

    assert resolution.strategy.kind == LIVE
    assert resolution.indicator.source == "Metals.dev"
    assert resolution.indicator.change_percent == "+1.35%"


def test_alpha_used_when_metals_missing() -> None:
    ctx = ResolveContext(fetched={"alpha:usd_jpy": _ind("usd_jpy", "149", "2024-03-14", "Alpha Vantage")})

    resolution = resolve(_plan("usd_jpy"), ctx)

    assert resolution.strategy.key == "alpha:usd_jpy"


def test_stale_cache_preferred_over_csv_and_substitute() -> None:
    cached = _ind("usd_jpy", "148", "2024-03-13", "Metals.dev")
    ctx = ResolveContext(
        fetched={
            "csv:usd_jpy": _ind("usd_jpy", "147", "2024-03-12", "CSV"),
            "fred:DEXJPUS": _ind("DEXJPUS", "146", "2024-03-08", "FRED"),
        },
        cached={"usd_jpy": cached},
        flags=frozenset({NO_METALS_KEY}),
    )

    resolution = resolve(_plan("usd_jpy"), ctx)

    assert resolution.strategy.kind == CACHED
    assert resolution.indicator == cached


def test_cached_change_recomputed_from_history() -> None:
    ctx = ResolveContext(
        cached={"lme_copper_jpy": _ind("lme_copper_jpy", "1320000", "2024-03-13", "Metals.dev", "JPY/mt")},
        history={
            "lme_copper_jpy": [
                _ind("lme_copper_jpy", "1320000", "2024-03-13", "Metals.dev", "JPY/mt"),
                _ind("lme_copper_jpy", "1200000", "2024-03-12", "Metals.dev", "JPY/mt"),
            ]
        },
    )

    resolution = resolve(_plan("lme_copper_jpy"), ctx)

    assert resolution.indicator.change_percent == "+10.00%"


def test_substitute_only_without_metals_key() -> None:
    substitute = _ind("PCOPPUSDM", "8500", "2024-02-01", "FRED", units="U.S. Dollars per Metric Ton")
    without_flag = ResolveContext(fetched={"fred:PCOPPUSDM": substitute})
    with_flag = ResolveContext(fetched={"fred:PCOPPUSDM": substitute}, flags=frozenset({NO_METALS_KEY}))

    assert resolve(_plan("lme_copper_jpy"), without_flag) is None

    resolution = resolve(_plan("lme_copper_jpy"), with_flag)
    assert resolution.strategy.kind == SUBSTITUTE
    assert resolution.indicator.id == "lme_copper_jpy"
    assert resolution.indicator.name == "LME Copper (FRED substitute)"
    assert resolution.indicator.source == "FRED"
    assert resolution.indicator.units == "U.S. Dollars per Metric Ton"


def test_csv_mode_promotes_archive() -> None:
    ctx = ResolveContext(
        fetched={
            "alpha:usd_cny": _ind("usd_cny", "7.21", "2024-03-15", "Alpha Vantage", "CNY/USD"),
            "csv:usd_cny": _ind("usd_cny", "7.10", "2024-01-15", "CSV", "CNY/USD"),
        }
    )

    live = resolve(_plan("usd_cny"), ctx)
    csv_plan = next(p for p in plans_for_mode("csv") if p.id == "usd_cny")
    point_in_time = resolve(csv_plan, ctx)

    assert live.strategy.kind == LIVE
    assert point_in_time.strategy.kind == CSV
    assert point_in_time.indicator.value == "7.10"


def test_change_not_mixed_across_units() -> None:
    current = _ind("lme_copper_jpy", "8500", "2024-03-15", "FRED", units="USD/mt")
    previous = _ind("lme_copper_jpy", "1300000", "2024-03-14", "Metals.dev", units="JPY/mt")

    assert with_change_from(current, previous).change_percent is None


def test_change_needs_strictly_older_previous() -> None:
    current = _ind("usd_jpy", "150", "2024-03-15", "Metals.dev")

    assert with_change_from(current, replace(current, value="149")).change_percent is None
    assert with_change_from(current, replace(current, value="149", date="2024-03-14")).change_percent == "+0.67%"


def test_resolve_all_merges_families_and_is_idempotent() -> None:
    raw_fred = [_ind("DGS10", "4.3", "2024-03-14", "FRED", "Percent")]
    raw_alpha = [
        _ind("usd_jpy", "149", "2024-03-14", "Alpha Vantage"),
        _ind("copx", "40.1", "2024-03-14", "Alpha Vantage", "USD"),
    ]
    ctx = ResolveContext(
        fetched={
            "metals:lme_copper_jpy": _ind("lme_copper_jpy", "1300000", "2024-03-15", "Metals.dev", "JPY/mt"),
            "metals:usd_jpy": _ind("usd_jpy", "150", "2024-03-15", "Metals.dev"),
            "alpha:usd_jpy": raw_alpha[0],
            "csv:lme_copper_usd": _ind("lme_copper_usd", "8600", "2024-03-14", "CSV", "USD/mt"),
        }
    )

    first = resolve_all(PLANS, ctx, raw_fred, raw_alpha)
    second = resolve_all(PLANS, ctx, raw_fred, raw_alpha)

    fred, alpha, resolutions = first
    assert [i.id for i in fred] == ["lme_copper_jpy", "lme_copper_usd", "DGS10"]
    assert [i.id for i in alpha] == ["usd_jpy", "copx"]
    assert alpha[0].source == "Metals.dev"
    assert "usd_cny" not in resolutions
    assert first == second


def test_cached_change_skips_history_in_other_units() -> None:
    ctx = ResolveContext(
        cached={"lme_copper_jpy": _ind("lme_copper_jpy", "1320000", "2024-03-13", "Metals.dev", "JPY/mt")},
        history={
            "lme_copper_jpy": [
                _ind("lme_copper_jpy", "8500", "2024-03-12", "FRED", "USD/mt"),
                _ind("lme_copper_jpy", "1200000", "2024-03-11", "Metals.dev", "JPY/mt"),
            ]
        },
    )

    resolution = resolve(_plan("lme_copper_jpy"), ctx)

    assert resolution.indicator.change_percent == "+10.00%"
