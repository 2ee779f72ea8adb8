"""Merge & fallback resolution for indicators with more than one source.

Each such indicator has a ``FallbackPlan``: an ordered tuple of strategies
evaluated top to bottom, first non-None result wins. The usual order is

1. the primary live adapter(s) of this run,
2. the value carried over from the last cached bundle (stale but known),
3. a local CSV archive reading,
4. a substitute adapter, relabelled so consumers can show provenance.

Resolution is a pure function of its inputs: the same fetched values,
cache and history always yield the same records. Ties never depend on
call completion order, only on plan order.
"""

from dataclasses import dataclass, field, replace
from typing import Mapping

from copper_market_dashboard.config import FRED_COPPER_SERIES, FRED_USDJPY_SERIES
from copper_market_dashboard.data.parsers import format_change_percent
from copper_market_dashboard.models import Indicator


LIVE = "live"
CACHED = "cached"
CSV = "csv"
SUBSTITUTE = "substitute"

NO_METALS_KEY = "no_metals_key"


@dataclass(frozen=True)
class Strategy:
    kind: str
    key: str = ""  # input key for live/csv/substitute, e.g. "metals:usd_jpy"
    label: str = ""  # display name for substitutes
    units: str = ""  # fallback units for substitutes
    when: str = ""  # only applies when this flag is set

    @property
    def name(self) -> str:
        return f"{self.kind}:{self.key}" if self.key else self.kind


@dataclass(frozen=True)
class FallbackPlan:
    id: str
    family: str  # "fred" or "alpha"
    strategies: tuple[Strategy, ...]


@dataclass
class ResolveContext:
    """Inputs of one resolution run."""

    fetched: Mapping[str, Indicator | None] = field(default_factory=dict)
    cached: Mapping[str, Indicator] = field(default_factory=dict)
    # Older values per indicator id, newest first
    history: Mapping[str, list[Indicator]] = field(default_factory=dict)
    flags: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Resolution:
    indicator: Indicator
    strategy: Strategy


PLANS: tuple[FallbackPlan, ...] = (
    FallbackPlan(
        id="lme_copper_jpy",
        family="fred",
        strategies=(
            Strategy(LIVE, "metals:lme_copper_jpy"),
            Strategy(CACHED),
            Strategy(
                SUBSTITUTE,
                f"fred:{FRED_COPPER_SERIES}",
                label="LME Copper (FRED substitute)",
                units="USD/mt",
                when=NO_METALS_KEY,
            ),
        ),
    ),
    FallbackPlan(
        id="lme_copper_usd",
        family="fred",
        strategies=(
            Strategy(CSV, "csv:lme_copper_usd"),
            Strategy(CACHED),
        ),
    ),
    FallbackPlan(
        id="usd_jpy",
        family="alpha",
        strategies=(
            Strategy(LIVE, "metals:usd_jpy"),
            Strategy(LIVE, "alpha:usd_jpy"),
            Strategy(CACHED),
            Strategy(CSV, "csv:usd_jpy"),
            Strategy(
                SUBSTITUTE,
                f"fred:{FRED_USDJPY_SERIES}",
                label="USD/JPY (FRED substitute)",
                units="JPY/USD",
                when=NO_METALS_KEY,
            ),
        ),
    ),
    FallbackPlan(
        id="usd_cny",
        family="alpha",
        strategies=(
            Strategy(LIVE, "alpha:usd_cny"),
            Strategy(CACHED),
            Strategy(CSV, "csv:usd_cny"),
        ),
    ),
)


def csv_first(plan: FallbackPlan) -> FallbackPlan:
    """Same plan with CSV readings promoted to the top (point-in-time mode)."""
    csv = tuple(s for s in plan.strategies if s.kind == CSV)
    rest = tuple(s for s in plan.strategies if s.kind != CSV)
    return replace(plan, strategies=csv + rest)


def plans_for_mode(mode: str) -> tuple[FallbackPlan, ...]:
    if mode == "csv":
        return tuple(csv_first(p) for p in PLANS)
    return PLANS


def with_change_from(current: Indicator, previous: Indicator | None) -> Indicator:
    """
    Attach a change figure computed against ``previous`` if none is set.

    Skipped when units differ or ``previous`` is not strictly older, so the
    figure never mixes incompatible denominators.
    """
    if current.change_percent or previous is None:
        return current
    if current.units and previous.units and current.units != previous.units:
        return current
    if not previous.date or not current.date or previous.date >= current.date:
        return current
    change = format_change_percent(current.value, previous.value)
    return replace(current, change_percent=change) if change else current


def _apply(strategy: Strategy, plan: FallbackPlan, ctx: ResolveContext) -> Indicator | None:
    if strategy.kind in (LIVE, CSV):
        fetched = ctx.fetched.get(strategy.key)
        if fetched is None:
            return None
        return with_change_from(replace(fetched, id=plan.id), ctx.cached.get(plan.id))

    if strategy.kind == CACHED:
        cached = ctx.cached.get(plan.id)
        if cached is None:
            return None
        for older in ctx.history.get(plan.id, []):
            if older.date < cached.date:
                with_change = with_change_from(cached, older)
                if with_change.change_percent is not None:
                    return with_change
        return cached

    if strategy.kind == SUBSTITUTE:
        fetched = ctx.fetched.get(strategy.key)
        if fetched is None:
            return None
        return replace(
            fetched,
            id=plan.id,
            name=strategy.label or fetched.name,
            units=fetched.units or strategy.units,
        )

    raise ValueError(f"Unknown strategy kind: {strategy.kind}")


def resolve(plan: FallbackPlan, ctx: ResolveContext) -> Resolution | None:
    """First strategy of the plan that yields a record, or None (indicator omitted)."""
    for strategy in plan.strategies:
        if strategy.when and strategy.when not in ctx.flags:
            continue
        indicator = _apply(strategy, plan, ctx)
        if indicator is not None:
            return Resolution(indicator, strategy)
    return None


def merge_family(raw: list[Indicator], resolved: list[Indicator]) -> list[Indicator]:
    """Resolved records first (plan order), then raw records; one record per id, first wins."""
    out, seen = [], set()
    for indicator in [*resolved, *raw]:
        if indicator.id in seen:
            continue
        seen.add(indicator.id)
        out.append(indicator)
    return out


def resolve_all(
    plans: tuple[FallbackPlan, ...],
    ctx: ResolveContext,
    raw_fred: list[Indicator],
    raw_alpha: list[Indicator],
) -> tuple[list[Indicator], list[Indicator], dict[str, Resolution]]:
    """Resolve every plan and merge into (fred, alpha) lists plus the chosen strategy per id."""
    resolutions: dict[str, Resolution] = {}
    for plan in plans:
        resolution = resolve(plan, ctx)
        if resolution is not None:
            resolutions[plan.id] = resolution

    def _family(name: str) -> list[Indicator]:
        return [resolutions[p.id].indicator for p in plans if p.family == name and p.id in resolutions]

    # Raw entries for planned ids are superseded by the plan's outcome
    planned = {p.id for p in plans}
    fred = merge_family([i for i in raw_fred if i.id not in planned], _family("fred"))
    alpha = merge_family([i for i in raw_alpha if i.id not in planned], _family("alpha"))
    return fred, alpha, resolutions
