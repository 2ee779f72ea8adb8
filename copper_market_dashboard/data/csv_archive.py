"""Point-in-time reads over local CSV archives partitioned by year.

Layout: ``<archive_dir>/<series dir>/<YYYY>.csv`` with a header row and
``date,value`` columns. A missing file is an expected outcome (coverage is
sparse), so every read returns None instead of raising.
"""

import logging
from datetime import date, datetime
from pathlib import Path

import pandas as pd

from copper_market_dashboard.config import CSV_SERIES
from copper_market_dashboard.data.parsers import format_change_percent, parse_number
from copper_market_dashboard.models import Indicator


logger = logging.getLogger(__name__)

SOURCE = "CSV"


class CsvArchiveReader:
    """Reads the latest archived value at or before a given date."""

    def __init__(self, archive_dir: Path, series: dict[str, dict[str, str]] | None = None) -> None:
        self.archive_dir = Path(archive_dir)
        self.series = series if series is not None else CSV_SERIES

    def path_for(self, series_id: str, year: int) -> Path:
        return self.archive_dir / self.series[series_id]["dir"] / f"{year}.csv"

    def _load_year(self, series_id: str, year: int) -> pd.DataFrame:
        """
        Load one year's rows with a valid date and a numeric value.

        Returns an empty frame when the file is missing or unreadable.
        Columns: date (Timestamp), value (raw text), number, path.
        """
        path = self.path_for(series_id, year)
        empty = pd.DataFrame(
            {
                "date": pd.Series(dtype="datetime64[ns]"),
                "value": pd.Series(dtype=object),
                "number": pd.Series(dtype=float),
                "path": pd.Series(dtype=object),
            }
        )
        if not path.is_file():
            return empty

        try:
            # utf-8-sig strips a leading byte-order mark
            df = pd.read_csv(
                path,
                dtype=str,
                encoding="utf-8-sig",
                keep_default_na=False,
                on_bad_lines="skip",
                skipinitialspace=True,
            )
        except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.warning(f"CSV {path}: unreadable ({type(e).__name__})")
            return empty

        if df.shape[1] < 2 or df.empty:
            return empty

        df = df.iloc[:, :2].copy()
        df.columns = ["date", "value"]
        df["date"] = pd.to_datetime(
            df["date"].astype(str).str.strip().str[:10], format="%Y-%m-%d", errors="coerce"
        )
        df["value"] = df["value"].astype(str).str.strip()
        df["number"] = df["value"].map(parse_number)
        df = df[df["date"].notna() & df["number"].notna()].copy()
        df["path"] = str(path)
        return df

    def read_at_or_before(self, series_id: str, target_date: str) -> Indicator | None:
        """
        Latest archived observation dated on or before ``target_date``.

        The previous valid row (for the change figure) may come from the
        prior year's file, as may the observation itself when the target
        falls before the first row of its year.
        """
        meta = self.series.get(series_id)
        if meta is None:
            logger.warning(f"CSV: unknown series {series_id}")
            return None
        try:
            target = date.fromisoformat(str(target_date)[:10])
        except ValueError:
            logger.warning(f"CSV: bad target date {target_date!r}")
            return None

        cutoff = pd.Timestamp(target)
        rows = self._load_year(series_id, target.year)
        rows = rows[rows["date"] <= cutoff]
        if len(rows) < 2:
            prior = self._load_year(series_id, target.year - 1)
            rows = pd.concat([prior[prior["date"] <= cutoff], rows], ignore_index=True)
        if rows.empty:
            return None

        rows = rows.sort_values("date", kind="stable")
        latest = rows.iloc[-1]
        prev = rows.iloc[-2] if len(rows) > 1 else None

        path = Path(latest["path"])
        try:
            last_updated = datetime.fromtimestamp(path.stat().st_mtime).isoformat(timespec="seconds")
        except OSError:
            last_updated = latest["date"].date().isoformat()

        return Indicator(
            id=series_id,
            name=meta["name"],
            value=latest["value"],
            date=latest["date"].date().isoformat(),
            units=meta["units"],
            frequency=meta["frequency"],
            source=SOURCE,
            last_updated=last_updated,
            change_percent=format_change_percent(latest["value"], prev["value"]) if prev is not None else None,
        )

    def read_all_at(self, target_date: str) -> dict[str, Indicator]:
        """Point-in-time read of every registered series (ids without data are absent)."""
        out = {}
        for series_id in self.series:
            indicator = self.read_at_or_before(series_id, target_date)
            if indicator is not None:
                out[series_id] = indicator
        return out
