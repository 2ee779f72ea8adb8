import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from copper_market_dashboard.config import Settings  # noqa: E402
from copper_market_dashboard.data.http import RetryPolicy  # noqa: E402


async def _no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def fixed_now() -> datetime:
    # 2024-03-15 15:00 JST, after the noon cutover
    return datetime(2024, 3, 15, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(sleep=_no_sleep)


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Settings bound to ``tmp_path`` with every credential off unless overridden."""

    def _make(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "fred_api_key": "",
            "alpha_vantage_api_key": "",
            "metals_dev_api_key": "",
            "cache_file": tmp_path / "cache" / "economy_cache.json",
            "snapshot_file": tmp_path / "cache" / "economy_snapshot.json",
            "publish_series_file": tmp_path / "public" / "selected_series_bundle.json",
            "csv_archive_dir": tmp_path / "csv",
            "warrant_data_dir": tmp_path / "public",
            "warrant_monthly_ceiling": None,
            "snapshot_backend": "none",
            "snapshot_db_path": tmp_path / "cache" / "snapshots.db",
            "microcms_service_domain": "",
            "microcms_snapshots_endpoint": "",
            "microcms_api_key": "",
            "economy_snapshot_token": "",
            "market_snapshot_token": "",
            "environment": "development",
            "allow_local_snapshot": False,
            "allow_live_fetch": False,
            "alpha_vantage_request_delay": 0.0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


def fred_observations(*points: tuple) -> Dict[str, Any]:
    """Observations payload, newest first as requested with sort_order=desc."""
    return {"observations": [{"date": d, "value": v} for d, v in points]}


def fred_info(units: str = "Percent", frequency: str = "Daily", last_updated: str = "2024-03-14 15:16:01-05") -> Dict[str, Any]:
    return {"seriess": [{"units": units, "frequency": frequency, "last_updated": last_updated}]}


def av_daily(series_key: str, closes: Dict[str, str], last_refreshed: str = "2024-03-14") -> Dict[str, Any]:
    return {
        "Meta Data": {"5. Last Refreshed": last_refreshed},
        series_key: {day: {"4. close": close} for day, close in closes.items()},
    }


def metals_latest(copper_usd_per_kg: float, usd_per_jpy: float, stamp: str = "2024-03-15T05:00:00Z") -> Dict[str, Any]:
    return {
        "status": "success",
        "metals": {"lme_copper": copper_usd_per_kg},
        "currencies": {"JPY": usd_per_jpy},
        "timestamps": {"metal": stamp, "currency": stamp},
    }


class FakeProviders:
    """Routes httpx requests to canned payloads by host and path, recording each call."""

    def __init__(self) -> None:
        self.fred: Dict[str, Dict[str, Any]] = {}
        self.fred_info: Dict[str, Dict[str, Any]] = {}
        self.alpha: Dict[str, Any] = {}
        self.metals: Dict[str, Any] = {}
        self.status: Dict[str, int] = {}
        self.calls: List[httpx.Request] = []

    def calls_to(self, host_fragment: str) -> List[httpx.Request]:
        return [r for r in self.calls if host_fragment in r.url.host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        host = request.url.host
        path = request.url.path
        params = request.url.params

        if "stlouisfed" in host:
            series_id = params.get("series_id", "")
            forced = self.status.get(f"fred:{series_id}")
            if forced:
                return httpx.Response(forced, json={"error_message": "forced"})
            if path.endswith("/observations"):
                payload = self.fred.get(series_id)
                if payload is None:
                    return httpx.Response(400, json={"error_message": "Bad series"})
                return httpx.Response(200, json=payload)
            return httpx.Response(200, json=self.fred_info.get(series_id, fred_info()))

        if "alphavantage" in host:
            key = params.get("symbol") or f"{params.get('from_symbol')}{params.get('to_symbol')}"
            if params.get("function") == "SECTOR":
                key = "SECTOR"
            payload = self.alpha.get(key)
            if payload is None:
                return httpx.Response(200, json={"Error Message": "Invalid API call"})
            return httpx.Response(200, json=payload)

        if "metals.dev" in host:
            name = path.rsplit("/v1/", 1)[-1]
            forced = self.status.get(f"metals:{name}")
            if forced:
                return httpx.Response(forced, json={"status": "failure"})
            payload = self.metals.get(name)
            if payload is None:
                return httpx.Response(404, json={"status": "failure"})
            return httpx.Response(200, json=payload)

        return httpx.Response(404, json={})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


def write_csv(path: Path, text: str, encoding: str = "utf-8") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding=encoding)
    return path
