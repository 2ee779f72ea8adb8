"""Data fetching, archives and persistence."""

from .fred_fetcher import FredFetcher
from .alphavantage_fetcher import AlphaVantageFetcher
from .metals_fetcher import MetalsDevFetcher
from .csv_archive import CsvArchiveReader
from .series_export import SeriesExport
from .cache import BundleCache, cache_bucket
from .snapshot_store import MicrocmsSnapshotStore, SqliteSnapshotStore, create_snapshot_store

__all__ = [
    "FredFetcher",
    "AlphaVantageFetcher",
    "MetalsDevFetcher",
    "CsvArchiveReader",
    "SeriesExport",
    "BundleCache",
    "cache_bucket",
    "MicrocmsSnapshotStore",
    "SqliteSnapshotStore",
    "create_snapshot_store",
]
