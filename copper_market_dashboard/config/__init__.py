"""Configuration."""

from .settings import (
    Settings,
    REFERENCE_TZ,
    BUCKET_CUTOVER_HOUR,
    FRED_SERIES,
    FRED_COPPER_SERIES,
    FRED_USDJPY_SERIES,
    ALPHA_VANTAGE_TASKS,
    CSV_SERIES,
    PUBLISH_ALIASES,
)

__all__ = [
    "Settings",
    "REFERENCE_TZ",
    "BUCKET_CUTOVER_HOUR",
    "FRED_SERIES",
    "FRED_COPPER_SERIES",
    "FRED_USDJPY_SERIES",
    "ALPHA_VANTAGE_TASKS",
    "CSV_SERIES",
    "PUBLISH_ALIASES",
]
