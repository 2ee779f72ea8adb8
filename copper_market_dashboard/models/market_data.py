"""Data models for indicators, bundles and the inventory dashboard."""

import math
from dataclasses import dataclass, field
from typing import Any


CACHE_VERSION = 3


class SourceStatus:
    """Per-source health flags stored in ``EconomyBundle.source_status``."""

    OK = "ok"
    FALLBACK = "fallback"
    EMPTY = "empty"
    DISABLED = "disabled"


@dataclass(frozen=True)
class Indicator:
    """Single observation of a named economic or market series."""

    id: str
    name: str
    value: str
    date: str
    units: str
    frequency: str
    source: str
    last_updated: str | None = None
    change_percent: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {
            "id": self.id,
            "name": self.name,
            "value": self.value,
            "date": self.date,
            "units": self.units,
            "frequency": self.frequency,
            "source": self.source,
        }
        if self.last_updated:
            data["lastUpdated"] = self.last_updated
        if self.change_percent:
            data["changePercent"] = self.change_percent
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Indicator":
        """Build from the camelCase JSON shape. Raises KeyError/TypeError on bad input."""
        if not isinstance(data, dict):
            raise TypeError(f"indicator must be an object, got {type(data).__name__}")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            value=str(data.get("value") if data.get("value") is not None else ""),
            date=str(data.get("date") or ""),
            units=str(data.get("units") or ""),
            frequency=str(data.get("frequency") or ""),
            source=str(data.get("source") or ""),
            last_updated=str(data["lastUpdated"]) if data.get("lastUpdated") else None,
            change_percent=str(data["changePercent"]) if data.get("changePercent") else None,
        )

    def numeric_value(self) -> float | None:
        """Value as a finite float, or None for opaque display strings."""
        try:
            number = float(self.value.replace(",", "").strip())
        except (AttributeError, ValueError):
            return None
        return number if math.isfinite(number) else None


@dataclass(frozen=True)
class EconomyBundle:
    """One build cycle worth of indicators plus cache metadata."""

    updated_at: str
    cache_bucket_jst: str
    fred: tuple[Indicator, ...] = ()
    alpha: tuple[Indicator, ...] = ()
    source_status: dict[str, str] = field(default_factory=dict)
    cache_version: int = CACHE_VERSION

    @property
    def indicators(self) -> list[Indicator]:
        return [*self.fred, *self.alpha]

    @property
    def mode(self) -> str:
        return self.source_status.get("mode", "")

    def find(self, indicator_id: str) -> Indicator | None:
        for indicator in self.indicators:
            if indicator.id == indicator_id:
                return indicator
        return None

    def is_empty(self) -> bool:
        return not self.fred and not self.alpha

    def to_dict(self) -> dict[str, Any]:
        return {
            "cacheVersion": self.cache_version,
            "updatedAt": self.updated_at,
            "cacheBucketJst": self.cache_bucket_jst,
            "sourceStatus": dict(self.source_status),
            "fred": [i.to_dict() for i in self.fred],
            "alpha": [i.to_dict() for i in self.alpha],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EconomyBundle":
        """Build from the persisted JSON document. Malformed indicators are skipped."""
        if not isinstance(data, dict):
            raise TypeError(f"bundle must be an object, got {type(data).__name__}")

        def _load(items: Any) -> tuple[Indicator, ...]:
            out = []
            for item in items if isinstance(items, list) else []:
                try:
                    out.append(Indicator.from_dict(item))
                except (KeyError, TypeError):
                    continue
            return tuple(out)

        status = data.get("sourceStatus")
        return cls(
            updated_at=str(data.get("updatedAt") or ""),
            cache_bucket_jst=str(data.get("cacheBucketJst") or ""),
            fred=_load(data.get("fred")),
            alpha=_load(data.get("alpha")),
            source_status={str(k): str(v) for k, v in status.items()} if isinstance(status, dict) else {},
            cache_version=int(data.get("cacheVersion") or 0),
        )

    @classmethod
    def empty(cls, updated_at: str, cache_bucket_jst: str, sources: list[str]) -> "EconomyBundle":
        """Terminal fallback: a well-formed bundle with every source flagged empty."""
        status = {name: SourceStatus.EMPTY for name in sources}
        status["mode"] = "empty"
        return cls(updated_at=updated_at, cache_bucket_jst=cache_bucket_jst, source_status=status)


@dataclass
class SnapshotPersistResult:
    """Outcome of one persistence step."""

    ok: bool
    action: str | None = None  # created, updated, skipped, written
    id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class DayPoint:
    date: str
    value: float


@dataclass(frozen=True)
class MonthPoint:
    month: str  # YYYY_MM
    value: float


@dataclass
class WarrantDashboardData:
    """Derived metrics over registered/unregistered inventory and the domestic price."""

    copper_tate: dict[str, Any]
    warrant: dict[str, Any]
    off_warrant: dict[str, Any]
    ratio: float | None
    alerts: list[str]
    charts: dict[str, list]
    breakdown: dict[str, list[dict[str, Any]]]

    def to_dict(self) -> dict[str, Any]:
        def _point(p: Any) -> Any:
            if isinstance(p, (DayPoint, MonthPoint)):
                return dict(p.__dict__)
            return p

        def _section(section: dict[str, Any]) -> dict[str, Any]:
            return {k: _point(v) for k, v in section.items()}

        return {
            "copperTate": _section(self.copper_tate),
            "warrant": _section(self.warrant),
            "offWarrant": _section(self.off_warrant),
            "ratio": self.ratio,
            "alerts": list(self.alerts),
            "charts": {k: [_point(p) for p in v] for k, v in self.charts.items()},
            "breakdown": {k: list(v) for k, v in self.breakdown.items()},
        }


def format_indicator_value(raw: str) -> str:
    """Display form of an indicator value."""
    if not raw:
        return "-"
    try:
        number = float(raw)
    except ValueError:
        return raw
    if not math.isfinite(number):
        return raw
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.4f}".rstrip("0").rstrip(".")
