"""Reader for the curated static series export.

The export is one JSON document written at build time::

    {"generated_at": "...", "series": {"<alias>": [{"date": "...", "value": 1.0}, ...]}}

It is the highest-priority source for the bundle read path and for the
inventory dashboard whenever it is present and non-empty.
"""

import json
import logging
from pathlib import Path
from typing import Any

from copper_market_dashboard.config import CSV_SERIES, PUBLISH_ALIASES
from copper_market_dashboard.data.parsers import format_change_percent, parse_number
from copper_market_dashboard.models import DayPoint, EconomyBundle, Indicator, SourceStatus


logger = logging.getLogger(__name__)

MAX_RECENT = 50


class SeriesExport:
    """Lazy, read-only view over the static export file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] | None = None

    def load(self) -> dict[str, Any]:
        """Parsed document, or an empty dict when missing or malformed."""
        if self._data is None:
            try:
                data = json.loads(self.path.read_text(encoding="utf-8-sig"))
            except FileNotFoundError:
                data = {}
            except (OSError, ValueError) as e:
                logger.warning(f"Series export {self.path}: unreadable ({type(e).__name__})")
                data = {}
            self._data = data if isinstance(data, dict) else {}
        return self._data

    @property
    def generated_at(self) -> str:
        return str(self.load().get("generated_at") or "")

    def points(self, alias: str) -> list[DayPoint]:
        """Valid points of one alias, oldest first, in file order for equal dates."""
        series = self.load().get("series")
        raw = series.get(alias) if isinstance(series, dict) else None
        if not isinstance(raw, list):
            return []

        out = []
        for point in raw:
            if not isinstance(point, dict):
                continue
            day = str(point.get("date") or "")[:10]
            value = parse_number(point.get("value"))
            if day and value is not None:
                out.append(DayPoint(date=day, value=value))
        out.sort(key=lambda p: p.date)
        return out

    def has_data(self) -> bool:
        series = self.load().get("series")
        if not isinstance(series, dict):
            return False
        return any(isinstance(v, list) and v for v in series.values())

    def _indicator(self, indicator_id: str, point: DayPoint, prev: DayPoint | None) -> Indicator:
        meta = CSV_SERIES.get(indicator_id, {})
        return Indicator(
            id=indicator_id,
            name=meta.get("name", indicator_id),
            value=str(point.value),
            date=point.date,
            units=meta.get("units", ""),
            frequency=meta.get("frequency", ""),
            source="CSV",
            last_updated=self.generated_at or point.date,
            change_percent=format_change_percent(point.value, prev.value) if prev else None,
        )

    def recent_values(self, indicator_id: str, limit: int = 10) -> list[Indicator]:
        """Most recent values of an indicator, newest first."""
        alias = PUBLISH_ALIASES.get(indicator_id)
        if alias is None:
            return []
        points = self.points(alias)
        limit = min(max(limit, 1), MAX_RECENT)
        picked = points[-limit:]
        return [self._indicator(indicator_id, p, None) for p in reversed(picked)]

    def to_bundle(self, updated_at: str, cache_bucket_jst: str) -> EconomyBundle | None:
        """Bundle built from the latest point of each mapped alias; None when nothing maps."""
        fred, alpha = [], []
        for indicator_id, alias in PUBLISH_ALIASES.items():
            points = self.points(alias)
            if not points:
                continue
            prev = points[-2] if len(points) > 1 else None
            indicator = self._indicator(indicator_id, points[-1], prev)
            family = CSV_SERIES.get(indicator_id, {}).get("family", "fred")
            (alpha if family == "alpha" else fred).append(indicator)

        if not fred and not alpha:
            return None
        return EconomyBundle(
            updated_at=self.generated_at or updated_at,
            cache_bucket_jst=cache_bucket_jst,
            fred=tuple(fred),
            alpha=tuple(alpha),
            source_status={"static": SourceStatus.OK, "mode": "static"},
        )
