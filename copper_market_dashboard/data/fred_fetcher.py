"""FRED API adapter: latest/previous observation per series."""

import asyncio
import logging

import httpx

from copper_market_dashboard.config import Settings, FRED_SERIES
from copper_market_dashboard.data.http import AsyncProvider, RetryPolicy, get_json
from copper_market_dashboard.data.parsers import (
    ParseError,
    parse_fred_observations,
    parse_fred_series_info,
)
from copper_market_dashboard.models import Indicator


logger = logging.getLogger(__name__)


class FredFetcher(AsyncProvider):
    """Fetches the latest observations from the FRED API."""

    BASE_URL = "https://api.stlouisfed.org/fred"
    SOURCE = "FRED"
    OBSERVATION_LIMIT = 20

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings or Settings()
        super().__init__(client, policy, timeout=self.settings.http_timeout)

    @property
    def enabled(self) -> bool:
        return self.settings.has_fred()

    async def _fetch_series_info(self, series_id: str) -> dict[str, str]:
        """Fetch units/frequency/revision metadata for a series."""
        data = await get_json(
            self.client,
            f"{self.BASE_URL}/series",
            {
                "series_id": series_id,
                "api_key": self.settings.fred_api_key,
                "file_type": "json",
            },
            policy=self.policy,
            label=f"fred:{series_id}:meta",
        )
        return parse_fred_series_info(data)

    async def _fetch_observations(self, series_id: str):
        # Newest first; a short window is enough to find two valid points
        data = await get_json(
            self.client,
            f"{self.BASE_URL}/series/observations",
            {
                "series_id": series_id,
                "api_key": self.settings.fred_api_key,
                "file_type": "json",
                "sort_order": "desc",
                "limit": self.OBSERVATION_LIMIT,
            },
            policy=self.policy,
            label=f"fred:{series_id}",
        )
        return parse_fred_observations(data)

    async def fetch_series(self, series_id: str, name: str | None = None) -> Indicator | None:
        """
        Fetch the latest observation of one series.

        Returns None when the key is missing, the request fails after
        retries, or the series has no valid observation.
        """
        if not self.enabled:
            return None

        try:
            parsed = await self._fetch_observations(series_id)
            if isinstance(parsed, ParseError):
                logger.warning(f"FRED {series_id}: {parsed.reason}")
                return None
            info = await self._fetch_series_info(series_id)
        except httpx.HTTPStatusError as e:
            logger.warning(f"FRED {series_id}: HTTP {e.response.status_code}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"FRED {series_id}: {type(e).__name__}: {e}")
            return None

        return Indicator(
            id=series_id,
            name=name or FRED_SERIES.get(series_id, series_id),
            value=parsed.value,
            date=parsed.date,
            units=info["units"],
            frequency=info["frequency"],
            source=self.SOURCE,
            last_updated=info["last_updated"] or parsed.date,
            change_percent=parsed.change_percent,
        )

    async def fetch_indicators(self, series: dict[str, str] | None = None) -> list[Indicator]:
        """Fetch all configured series concurrently, keeping configuration order."""
        if not self.enabled:
            logger.info("FRED_API_KEY not set, skipping FRED")
            return []

        series = series if series is not None else FRED_SERIES
        results = await asyncio.gather(
            *(self.fetch_series(sid, name) for sid, name in series.items()),
            return_exceptions=True,
        )

        out = []
        for series_id, result in zip(series, results):
            if isinstance(result, BaseException):
                logger.error(f"FRED {series_id}: unexpected {type(result).__name__}: {result}")
                continue
            if result is not None:
                out.append(result)

        logger.info(f"FRED: {len(out)}/{len(series)} series fetched")
        return out
