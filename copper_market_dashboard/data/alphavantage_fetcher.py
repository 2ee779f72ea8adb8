"""Alpha Vantage adapter for FX rates and equities.

Free tier is rate limited, so calls are issued one at a time with a fixed
delay between them.
"""

import asyncio
import logging
from datetime import datetime

import httpx

from copper_market_dashboard.config import Settings, ALPHA_VANTAGE_TASKS, REFERENCE_TZ
from copper_market_dashboard.data.http import AsyncProvider, RetryPolicy, get_json
from copper_market_dashboard.data.parsers import ParseError, parse_av_daily, parse_av_sector
from copper_market_dashboard.models import Indicator


logger = logging.getLogger(__name__)

SERIES_KEYS = {
    "FX_DAILY": "Time Series FX (Daily)",
    "TIME_SERIES_DAILY": "Time Series (Daily)",
}


class AlphaVantageFetcher(AsyncProvider):
    """Fetches daily FX/equity closes from Alpha Vantage."""

    BASE_URL = "https://www.alphavantage.co/query"
    SOURCE = "Alpha Vantage"

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
        request_delay: float | None = None,
    ) -> None:
        self.settings = settings or Settings()
        super().__init__(client, policy, timeout=self.settings.http_timeout)
        self.request_delay = (
            self.settings.alpha_vantage_request_delay if request_delay is None else request_delay
        )

    @property
    def enabled(self) -> bool:
        return self.settings.has_alpha_vantage()

    async def _request(self, task_id: str, task: dict[str, str]):
        params = {k: v for k, v in task.items() if k not in ("name", "units", "frequency")}
        params["apikey"] = self.settings.alpha_vantage_api_key
        data = await get_json(
            self.client, self.BASE_URL, params, policy=self.policy, label=f"av:{task_id}"
        )

        function = task["function"]
        if function == "SECTOR":
            today = datetime.now(REFERENCE_TZ).date().isoformat()
            return parse_av_sector(data, today)
        return parse_av_daily(data, SERIES_KEYS[function])

    async def fetch_task(self, task_id: str, task: dict[str, str] | None = None) -> Indicator | None:
        """Fetch one configured task. Returns None on any failure."""
        if not self.enabled:
            return None
        task = task or ALPHA_VANTAGE_TASKS[task_id]

        try:
            parsed = await self._request(task_id, task)
        except httpx.HTTPStatusError as e:
            logger.warning(f"Alpha Vantage {task_id}: HTTP {e.response.status_code}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Alpha Vantage {task_id}: {type(e).__name__}: {e}")
            return None

        if isinstance(parsed, ParseError):
            logger.warning(f"Alpha Vantage {task_id}: {parsed.reason}")
            return None

        return Indicator(
            id=task_id,
            name=task["name"],
            value=parsed.value,
            date=parsed.date,
            units=task["units"],
            frequency=task["frequency"],
            source=self.SOURCE,
            last_updated=parsed.last_updated or parsed.date,
            change_percent=parsed.change_percent,
        )

    async def fetch_indicators(self, tasks: dict[str, dict[str, str]] | None = None) -> list[Indicator]:
        """Fetch all tasks sequentially, sleeping between calls."""
        if not self.enabled:
            logger.info("ALPHA_VANTAGE_API_KEY not set, skipping Alpha Vantage")
            return []

        tasks = tasks if tasks is not None else ALPHA_VANTAGE_TASKS
        out = []
        for i, (task_id, task) in enumerate(tasks.items()):
            indicator = await self.fetch_task(task_id, task)
            if indicator is not None:
                out.append(indicator)
            if i < len(tasks) - 1 and self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

        logger.info(f"Alpha Vantage: {len(out)}/{len(tasks)} tasks fetched")
        return out
