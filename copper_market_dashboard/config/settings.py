"""Configuration settings for the copper dashboard pipeline."""

from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo
import os

from dotenv import load_dotenv


load_dotenv()


PROJECT_ROOT = Path(__file__).parent.parent.parent

# Cache buckets roll over at noon Tokyo time
REFERENCE_TZ = ZoneInfo("Asia/Tokyo")
BUCKET_CUTOVER_HOUR = 12

# FRED series shown on the economy page (order is display order)
FRED_SERIES: dict[str, str] = {
    "NAPM": "ISM Manufacturing PMI",
    "DTWEXBGS": "Nominal Broad U.S. Dollar Index",
    "FEDFUNDS": "Federal Funds Rate",
    "DGS10": "10-Year Treasury Yield",
    "VIXCLS": "VIX",
    "IPMAN": "Industrial Production: Manufacturing",
    "CHNPIEATI01GYQ": "China PPI (Industrial)",
    "TLRESCONS": "Residential Construction Spending",
    "PERMIT": "Building Permits",
    "HOUST": "Housing Starts",
    "TCU": "Capacity Utilization",
    "USSLIND": "US Leading Index",
    "DCOILWTICO": "Crude Oil (WTI)",
    "DCOILBRENTEU": "Crude Oil (Brent)",
    "DHHNGSP": "Natural Gas (Henry Hub)",
    "GASREGCOVW": "Gasoline, US Regular",
    "CES3000000003": "Manufacturing Avg Hourly Earnings",
    "GDP": "US GDP",
    "CPIAUCSL": "US CPI (All Items)",
    "PPIACO": "Producer Price Index",
    "CES1021210001": "Mining Employment",
    "CHLPROINDMISMEI": "Chile Industrial Production",
    "PERPROINDMISMEI": "Peru Industrial Production",
    "CES1021210008": "Mining Avg Hourly Earnings",
    "DGORDER": "Manufacturers' New Orders: Durable Goods",
    "TTLCONS": "Total Construction Spending",
}

# Substitute series used only when the primary adapter is unavailable
FRED_COPPER_SERIES = "PCOPPUSDM"
FRED_USDJPY_SERIES = "DEXJPUS"

# Alpha Vantage tasks: id -> request definition
ALPHA_VANTAGE_TASKS: dict[str, dict[str, str]] = {
    "usd_jpy": {
        "name": "USD/JPY",
        "units": "JPY/USD",
        "frequency": "Daily",
        "function": "FX_DAILY",
        "from_symbol": "USD",
        "to_symbol": "JPY",
    },
    "copx": {
        "name": "Copper Miners ETF (COPX)",
        "units": "USD",
        "frequency": "Daily",
        "function": "TIME_SERIES_DAILY",
        "symbol": "COPX",
    },
    "usd_cny": {
        "name": "USD/CNY",
        "units": "CNY/USD",
        "frequency": "Daily",
        "function": "FX_DAILY",
        "from_symbol": "USD",
        "to_symbol": "CNY",
    },
    "fcx": {
        "name": "Freeport-McMoRan (FCX)",
        "units": "USD",
        "frequency": "Daily",
        "function": "TIME_SERIES_DAILY",
        "symbol": "FCX",
    },
    "sp500": {
        "name": "S&P 500 ETF (SPY)",
        "units": "USD",
        "frequency": "Daily",
        "function": "TIME_SERIES_DAILY",
        "symbol": "SPY",
    },
    "sector_performance": {
        "name": "Sector Performance (Real-Time)",
        "units": "%",
        "frequency": "Real-Time",
        "function": "SECTOR",
    },
}

# Local CSV archives: <csv_archive_dir>/<dir>/<YYYY>.csv
CSV_SERIES: dict[str, dict[str, str]] = {
    "lme_copper_usd": {
        "dir": "lme_copper_cash_usd_t",
        "name": "LME Copper Cash",
        "units": "USD/mt",
        "frequency": "Daily",
        "family": "fred",
    },
    "usd_jpy": {
        "dir": "america_dexjpus",
        "name": "USD/JPY",
        "units": "JPY/USD",
        "frequency": "Daily",
        "family": "alpha",
    },
    "usd_cny": {
        "dir": "america_dexchus",
        "name": "USD/CNY",
        "units": "CNY/USD",
        "frequency": "Daily",
        "family": "alpha",
    },
}

# Indicator id -> alias in the curated static series export
PUBLISH_ALIASES: dict[str, str] = {
    "lme_copper_usd": "lme_copper_cash_usd_t",
    "usd_jpy": "america_dexjpus",
    "usd_cny": "america_dexchus",
}


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name, "").strip()
    return Path(value) if value else default


def _env_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


@dataclass
class Settings:
    """Application settings."""

    fred_api_key: str = field(default_factory=lambda: os.getenv("FRED_API_KEY", "").strip())
    alpha_vantage_api_key: str = field(
        default_factory=lambda: os.getenv("ALPHA_VANTAGE_API_KEY", "").strip()
    )
    metals_dev_api_key: str = field(
        default_factory=lambda: os.getenv("METALS_DEV_API_KEY", "").strip()
    )
    cache_file: Path = field(
        default_factory=lambda: _env_path(
            "ECONOMY_CACHE_FILE",
            PROJECT_ROOT / ".cache" / "economy_cache.json",
        )
    )
    snapshot_file: Path = field(
        default_factory=lambda: _env_path(
            "ECONOMY_SNAPSHOT_FILE",
            PROJECT_ROOT / ".cache" / "economy_snapshot.json",
        )
    )
    publish_series_file: Path = field(
        default_factory=lambda: _env_path(
            "PUBLISH_SELECTED_SERIES_FILE",
            PROJECT_ROOT / "public" / "data" / "selected_series_bundle.json",
        )
    )
    csv_archive_dir: Path = field(
        default_factory=lambda: _env_path("CSV_ARCHIVE_DIR", PROJECT_ROOT / "data" / "csv")
    )
    warrant_data_dir: Path = field(
        default_factory=lambda: _env_path("WARRANT_DATA_DIR", PROJECT_ROOT / "public" / "data")
    )
    # Largest plausible monthly off-warrant figure; duplicates above it are dropped
    warrant_monthly_ceiling: float | None = field(
        default_factory=lambda: _env_float("WARRANT_MONTHLY_CEILING")
    )
    snapshot_backend: str = field(
        default_factory=lambda: os.getenv("SNAPSHOT_BACKEND", "microcms").strip().lower()
    )
    snapshot_db_path: Path = field(
        default_factory=lambda: _env_path(
            "SNAPSHOT_DB_PATH", PROJECT_ROOT / ".cache" / "economy_snapshots.db"
        )
    )
    microcms_service_domain: str = field(
        default_factory=lambda: os.getenv("MICROCMS_SERVICE_DOMAIN", "").strip()
    )
    microcms_snapshots_endpoint: str = field(
        default_factory=lambda: os.getenv("MICROCMS_SNAPSHOTS_ENDPOINT", "").strip()
    )
    # Write key first; the read key is enough for read-only deployments
    microcms_api_key: str = field(
        default_factory=lambda: (
            os.getenv("MICROCMS_SNAPSHOT_WRITE_API_KEY", "").strip()
            or os.getenv("MICROCMS_READ_API_KEY", "").strip()
        )
    )
    economy_snapshot_token: str = field(
        default_factory=lambda: (
            os.getenv("ECONOMY_SNAPSHOT_API_TOKEN", "").strip()
            or os.getenv("MARKET_SNAPSHOT_API_TOKEN", "").strip()
        )
    )
    market_snapshot_token: str = field(
        default_factory=lambda: os.getenv("MARKET_SNAPSHOT_API_TOKEN", "").strip()
    )
    environment: str = field(
        default_factory=lambda: os.getenv("APP_ENV", "development").strip().lower()
    )
    allow_local_snapshot: bool = field(
        default_factory=lambda: _env_flag("ECONOMY_ALLOW_LOCAL_SNAPSHOT")
    )
    allow_live_fetch: bool = field(default_factory=lambda: _env_flag("ECONOMY_ALLOW_LIVE_FETCH"))
    alpha_vantage_request_delay: float = field(
        default_factory=lambda: float(os.getenv("ALPHA_VANTAGE_REQUEST_DELAY", "1.2"))
    )
    http_timeout: float = 30.0

    def __post_init__(self) -> None:
        self.cache_file = Path(self.cache_file)
        self.snapshot_file = Path(self.snapshot_file)
        self.publish_series_file = Path(self.publish_series_file)
        self.csv_archive_dir = Path(self.csv_archive_dir)
        self.warrant_data_dir = Path(self.warrant_data_dir)
        self.snapshot_db_path = Path(self.snapshot_db_path)

    def validate(self) -> None:
        """Validate settings that have no safe default."""
        if self.snapshot_backend not in ("microcms", "sqlite", "none"):
            raise ValueError(
                f"SNAPSHOT_BACKEND must be microcms, sqlite or none (got {self.snapshot_backend!r})"
            )
        if self.is_production() and not self.economy_snapshot_token:
            raise ValueError("ECONOMY_SNAPSHOT_API_TOKEN must be set in production")

    def has_fred(self) -> bool:
        return bool(self.fred_api_key)

    def has_alpha_vantage(self) -> bool:
        """Check if Alpha Vantage API key is configured."""
        return bool(self.alpha_vantage_api_key)

    def has_metals(self) -> bool:
        return bool(self.metals_dev_api_key)

    def has_microcms(self) -> bool:
        return bool(
            self.microcms_service_domain
            and self.microcms_snapshots_endpoint
            and self.microcms_api_key
        )

    def is_production(self) -> bool:
        return self.environment == "production"
