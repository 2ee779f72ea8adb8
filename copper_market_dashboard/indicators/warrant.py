"""Aggregate copper inventory and domestic price data for the dashboard."""

import logging
import math
import re
from pathlib import Path
from typing import Any, Iterable

import numpy as np
import pandas as pd

from copper_market_dashboard.config import Settings
from copper_market_dashboard.data.series_export import SeriesExport
from copper_market_dashboard.models import DayPoint, MonthPoint, WarrantDashboardData


logger = logging.getLogger(__name__)


# Alert thresholds
MA_WINDOW = 20
LOOSENING_MARGIN = 0.05  # above MA by more than this share
RATIO_FLOOR = 0.75  # registered / (registered + unregistered)
WEEKLY_MOVE_PCT = 5.0
MONTHLY_MOVE_PCT = 20.0

TOP_N = 5

# Chart windows
CHART_DAILY = 30
CHART_MONTHLY = 12
CHART_TATE = 365

WARRANT_FILE = re.compile(r"^warrant_\d{4}_\d{2}\.csv$")
OFFWARRANT_FILE = re.compile(r"^offwarrant_\d{4}_\d{2}\.csv$")
TATE_GLOB = "copper_tate_ne_*.csv"

# Aliases in the static series export
EXPORT_WARRANT_DAILY = "warrant_copper_daily_t"
EXPORT_OFFWARRANT_MONTHLY = "offwarrant_copper_monthly_t"
EXPORT_TATE_DAILY = "japan_tatene_jpy_t"

NOMINAL_ALERT = "No significant alerts. Normal monitoring."
MISSING_DIR_ALERT = "Inventory data folder not found ({path})."


def to_number(value: Any) -> float:
    """Parse a CSV cell ("1,234", " 56 ") to float; blanks and junk count as 0."""
    try:
        number = float(str(value).replace(",", "").strip())
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def pct_change(current: float | None, previous: float | None) -> float | None:
    """Percent change relative to |previous|; None when either is missing or previous is 0."""
    if current is None or previous is None or previous == 0:
        return None
    if not math.isfinite(current) or not math.isfinite(previous):
        return None
    return (current - previous) / abs(previous) * 100


def moving_average(values: list[float], window: int = MA_WINDOW) -> float | None:
    """Trailing mean of the last ``window`` values, or of all of them when fewer exist."""
    if not values:
        return None
    return float(np.mean(values[-window:]))


def _point_key(point: DayPoint | MonthPoint) -> str:
    return point.date if isinstance(point, DayPoint) else point.month


def dedupe_points(points: Iterable, ceiling: float | None = None) -> list:
    """
    One point per date/month, oldest first.

    Without a ceiling the first occurrence wins. With a ceiling the lowest
    value at or under it wins, so an annual or cumulative figure filed as
    a monthly one is dropped in favor of the plausible reading. When every
    duplicate exceeds the ceiling the lowest one is kept.
    """
    groups: dict[str, list] = {}
    for point in points:
        groups.setdefault(_point_key(point), []).append(point)

    out = []
    for key in sorted(groups):
        candidates = groups[key]
        if ceiling is None or len(candidates) == 1:
            out.append(candidates[0])
            continue
        plausible = [p for p in candidates if p.value <= ceiling] or candidates
        out.append(min(plausible, key=lambda p: p.value))
    return out


def _read_csv(path: Path) -> pd.DataFrame:
    try:
        df = pd.read_csv(
            path,
            dtype=str,
            encoding="utf-8-sig",
            keep_default_na=False,
            skipinitialspace=True,
            on_bad_lines="skip",
        )
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.warning(f"{path.name}: unreadable, skipped ({type(e).__name__})")
        return pd.DataFrame()
    df.columns = [str(c).strip() for c in df.columns]
    return df


def _column(df: pd.DataFrame, name: str) -> pd.Series:
    """Stripped text column, blank when the file lacks it."""
    if name not in df.columns:
        return pd.Series([""] * len(df), index=df.index, dtype=str)
    return df[name].astype(str).str.strip()


def _copper_rows(df: pd.DataFrame) -> pd.DataFrame:
    return df[_column(df, "Metal") == "Copper"]


def _month_of(day: str) -> str:
    return day[:7].replace("-", "_")


def _empty_dashboard(message: str) -> WarrantDashboardData:
    return WarrantDashboardData(
        copper_tate={"latest": None, "prev": None, "diffPct1d": None},
        warrant={
            "latest": None,
            "prev": None,
            "diffPct1d": None,
            "diffPct7d": None,
            "ma20": None,
            "monthlyLatest": None,
            "monthlyPrev": None,
            "diffPctMoM": None,
        },
        off_warrant={"latest": None, "prev": None, "diffPctMoM": None},
        ratio=None,
        alerts=[message],
        charts={"warrantDaily": [], "offWarrantMonthly": [], "copperTateDaily": []},
        breakdown={"warrantLatestByLocation": [], "offWarrantLatestByPoint": []},
    )


class WarrantDashboardAggregator:
    """Builds ``WarrantDashboardData`` from a data directory of exchange CSV files."""

    def __init__(
        self,
        data_dir: Path | None = None,
        export: SeriesExport | None = None,
        monthly_ceiling: float | None = None,
    ) -> None:
        if data_dir is None or export is None:
            settings = Settings()
            data_dir = data_dir or settings.warrant_data_dir
            export = export or SeriesExport(settings.publish_series_file)
            if monthly_ceiling is None:
                monthly_ceiling = settings.warrant_monthly_ceiling
        self.data_dir = Path(data_dir)
        self.export = export
        self.monthly_ceiling = monthly_ceiling

    def _files(self, pattern: re.Pattern) -> list[Path]:
        return sorted(p for p in self.data_dir.iterdir() if pattern.match(p.name))

    # ------------------------------------------------------------------
    # Series loading
    # ------------------------------------------------------------------

    def _from_export(self) -> tuple[list[DayPoint], list[MonthPoint], list[DayPoint]] | None:
        daily = self.export.points(EXPORT_WARRANT_DAILY)
        monthly_days = self.export.points(EXPORT_OFFWARRANT_MONTHLY)
        tate = self.export.points(EXPORT_TATE_DAILY)
        if not daily and not monthly_days and not tate:
            return None
        monthly = [MonthPoint(month=_month_of(p.date), value=p.value) for p in monthly_days]
        return (
            dedupe_points(daily),
            dedupe_points(monthly, self.monthly_ceiling),
            dedupe_points(tate),
        )

    def _warrant_daily(self, files: list[Path]) -> list[DayPoint]:
        frames = [_copper_rows(_read_csv(f)) for f in files]
        frames = [f for f in frames if not f.empty]
        if not frames:
            return []
        df = pd.concat(frames, ignore_index=True)
        df = df.assign(
            day=_column(df, "Date").str.slice(0, 10),
            value=_column(df, "Closing Stock").map(to_number),
        )
        totals = df[df["day"] != ""].groupby("day")["value"].sum().sort_index()
        return [DayPoint(date=day, value=float(v)) for day, v in totals.items()]

    def _offwarrant_monthly(self, files: list[Path]) -> list[MonthPoint]:
        points = []
        for f in files:
            df = _read_csv(f)
            if df.empty:
                continue
            month = f.stem.removeprefix("offwarrant_")
            total = _column(df, "CU").map(to_number).sum()
            points.append(MonthPoint(month=month, value=float(total)))
        return dedupe_points(points, self.monthly_ceiling)

    def _tate_daily(self) -> list[DayPoint]:
        points = []
        for f in sorted(self.data_dir.glob(TATE_GLOB)):
            df = _read_csv(f)
            days = _column(df, "date").str.slice(0, 10)
            values = _column(df, "price_jpy_per_ton").map(to_number)
            points.extend(
                DayPoint(date=d, value=float(v)) for d, v in zip(days, values) if d and v
            )
        return dedupe_points(points)

    # ------------------------------------------------------------------
    # Breakdowns
    # ------------------------------------------------------------------

    def _warrant_by_location(self, files: list[Path]) -> list[dict[str, Any]]:
        if not files:
            return []
        df = _copper_rows(_read_csv(files[-1]))
        if df.empty:
            return []
        df = df.assign(
            country=_column(df, "Country/Region"),
            location=_column(df, "Location"),
            value=_column(df, "Closing Stock").map(to_number),
        )
        grouped = df.groupby(["country", "location"], as_index=False)["value"].sum()
        grouped = grouped[grouped["value"] > 0].sort_values("value", ascending=False, kind="stable")
        return grouped.head(TOP_N).to_dict(orient="records")

    def _offwarrant_by_point(self, files: list[Path]) -> list[dict[str, Any]]:
        if not files:
            return []
        df = _read_csv(files[-1])
        df = df.assign(
            region=_column(df, "REGION"),
            country=_column(df, "COUNTRY/REGION"),
            point=_column(df, "DELIVERY POINT"),
            value=_column(df, "CU").map(to_number),
        )
        df = df[df["value"] != 0]
        if df.empty:
            return []
        grouped = df.groupby(["region", "country", "point"], as_index=False)["value"].sum()
        grouped = grouped.sort_values("value", ascending=False, kind="stable")
        return grouped.head(TOP_N).to_dict(orient="records")

    # ------------------------------------------------------------------
    # Aggregate
    # ------------------------------------------------------------------

    def build(self) -> WarrantDashboardData:
        if not self.data_dir.is_dir():
            logger.warning(f"Inventory data dir missing: {self.data_dir}")
            return _empty_dashboard(MISSING_DIR_ALERT.format(path=self.data_dir))

        warrant_files = self._files(WARRANT_FILE)
        off_files = self._files(OFFWARRANT_FILE)

        exported = self._from_export()
        if exported is not None:
            daily, monthly, tate = exported
        else:
            daily = self._warrant_daily(warrant_files)
            monthly = self._offwarrant_monthly(off_files)
            tate = self._tate_daily()
        logger.info(
            f"Inventory series: {len(daily)} daily, {len(monthly)} monthly, {len(tate)} price points"
        )

        def _last(points: list, n: int = 1):
            return points[-n] if len(points) >= n else None

        tate_latest, tate_prev = _last(tate), _last(tate, 2)
        latest, prev = _last(daily), _last(daily, 2)
        prev7 = _last(daily, 8)
        ma20 = moving_average([p.value for p in daily])

        # Registered inventory rolled up to the last reading of each month
        month_end: dict[str, float] = {}
        for p in daily:
            month_end[_month_of(p.date)] = p.value
        warrant_months = [MonthPoint(month=m, value=v) for m, v in sorted(month_end.items())]
        w_month_latest, w_month_prev = _last(warrant_months), _last(warrant_months, 2)

        off_latest, off_prev = _last(monthly), _last(monthly, 2)

        ratio = None
        if latest and off_latest and latest.value + off_latest.value > 0:
            ratio = latest.value / (latest.value + off_latest.value)

        diff_1d = pct_change(latest.value, prev.value) if latest and prev else None
        diff_7d = pct_change(latest.value, prev7.value) if latest and prev7 else None
        warrant_mom = (
            pct_change(w_month_latest.value, w_month_prev.value)
            if w_month_latest and w_month_prev
            else None
        )
        off_mom = pct_change(off_latest.value, off_prev.value) if off_latest and off_prev else None

        return WarrantDashboardData(
            copper_tate={
                "latest": tate_latest,
                "prev": tate_prev,
                "diffPct1d": pct_change(tate_latest.value, tate_prev.value) if tate_latest and tate_prev else None,
            },
            warrant={
                "latest": latest,
                "prev": prev,
                "diffPct1d": diff_1d,
                "diffPct7d": diff_7d,
                "ma20": ma20,
                "monthlyLatest": w_month_latest,
                "monthlyPrev": w_month_prev,
                "diffPctMoM": warrant_mom,
            },
            off_warrant={"latest": off_latest, "prev": off_prev, "diffPctMoM": off_mom},
            ratio=ratio,
            alerts=build_alerts(latest.value if latest else None, ma20, ratio, diff_7d, off_mom),
            charts={
                "warrantDaily": daily[-CHART_DAILY:],
                "offWarrantMonthly": monthly[-CHART_MONTHLY:],
                "copperTateDaily": tate[-CHART_TATE:],
            },
            breakdown={
                "warrantLatestByLocation": self._warrant_by_location(warrant_files),
                "offWarrantLatestByPoint": self._offwarrant_by_point(off_files),
            },
        )


def build_alerts(
    latest: float | None,
    ma: float | None,
    ratio: float | None,
    diff_7d: float | None,
    off_mom: float | None,
) -> list[str]:
    """Human-readable alerts; a single nominal message when nothing triggers."""
    alerts = []
    if latest is not None and ma:
        if latest < ma:
            alerts.append(
                f"Registered copper stock fell below its {MA_WINDOW}-day average (tightening signal)."
            )
        elif latest > ma * (1 + LOOSENING_MARGIN):
            alerts.append(
                f"Registered copper stock is more than {LOOSENING_MARGIN:.0%} above its "
                f"{MA_WINDOW}-day average (loosening signal)."
            )
    if ratio is not None and ratio < RATIO_FLOOR:
        alerts.append(
            f"Registered share of total stock is below {RATIO_FLOOR:.0%}; watch off-warrant build-up."
        )
    if diff_7d is not None and abs(diff_7d) >= WEEKLY_MOVE_PCT:
        alerts.append(f"Registered copper stock moved {diff_7d:+.2f}% over 7 days.")
    if off_mom is not None and abs(off_mom) >= MONTHLY_MOVE_PCT:
        alerts.append(f"Off-warrant copper stock moved {off_mom:+.2f}% month over month.")
    if not alerts:
        alerts.append(NOMINAL_ALERT)
    return alerts


def main() -> None:
    """CLI entry point for the inventory aggregate."""
    import json

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    data = WarrantDashboardAggregator().build()
    summary = data.to_dict()

    print("\nCopper inventory")
    print("-" * 50)
    for section in ("warrant", "offWarrant", "copperTate"):
        latest = summary[section]["latest"]
        print(f"{section:12} latest: {json.dumps(latest)}")
    ratio = summary["ratio"]
    print(f"{'ratio':12} {ratio:.2%}" if ratio is not None else f"{'ratio':12} n/a")

    print("\nAlerts:")
    for alert in summary["alerts"]:
        print(f"  - {alert}")


if __name__ == "__main__":
    main()
