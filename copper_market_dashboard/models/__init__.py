"""Data models."""

from .market_data import (
    CACHE_VERSION,
    DayPoint,
    EconomyBundle,
    Indicator,
    MonthPoint,
    SnapshotPersistResult,
    SourceStatus,
    WarrantDashboardData,
    format_indicator_value,
)

__all__ = [
    "CACHE_VERSION",
    "DayPoint",
    "EconomyBundle",
    "Indicator",
    "MonthPoint",
    "SnapshotPersistResult",
    "SourceStatus",
    "WarrantDashboardData",
    "format_indicator_value",
]
