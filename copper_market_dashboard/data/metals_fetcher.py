"""Metals.dev adapter: LME copper in JPY/mt and the USD/JPY cross.

The ``latest`` endpoint returns the copper price (USD/kg) and a
USD-per-currency table in one response; both indicators are derived from
that single payload. When it is unusable, copper falls back to the LME
``authority`` endpoint (GBP/mt per day) converted with the currency table.
"""

import asyncio
import logging
from datetime import datetime, timedelta

import httpx

from copper_market_dashboard.config import Settings, REFERENCE_TZ
from copper_market_dashboard.data.http import AsyncProvider, RetryPolicy, get_json
from copper_market_dashboard.data.parsers import (
    ParseError,
    format_change_percent,
    number_text,
    parse_metals_authority_price,
    parse_metals_copper_jpy,
    parse_metals_gbp_to_jpy,
    parse_metals_usd_jpy,
)
from copper_market_dashboard.models import Indicator


logger = logging.getLogger(__name__)

AUTHORITY_LOOKBACK_DAYS = 7


class MetalsDevFetcher(AsyncProvider):
    """Fetches LME copper and USD/JPY from Metals.dev."""

    BASE_URL = "https://api.metals.dev/v1"
    SOURCE = "Metals.dev"

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.settings = settings or Settings()
        super().__init__(client, policy, timeout=self.settings.http_timeout)
        self._latest: asyncio.Future | None = None

    @property
    def enabled(self) -> bool:
        return self.settings.has_metals()

    def _today(self) -> datetime:
        return datetime.now(REFERENCE_TZ)

    async def _get(self, path: str, params: dict, label: str):
        params = {**params, "api_key": self.settings.metals_dev_api_key}
        return await get_json(
            self.client, f"{self.BASE_URL}/{path}", params, policy=self.policy, label=label
        )

    async def _latest_payload(self):
        # Both indicators read the same payload; request it once per fetcher
        if self._latest is None:
            self._latest = asyncio.ensure_future(
                self._get("latest", {"currency": "USD", "unit": "kg"}, "metals:latest")
            )
        return await self._latest

    async def _copper_from_latest(self) -> Indicator | None:
        today = self._today().date().isoformat()
        parsed = parse_metals_copper_jpy(await self._latest_payload(), today)
        if isinstance(parsed, ParseError):
            logger.warning(f"Metals.dev latest: {parsed.reason}")
            return None
        return Indicator(
            id="lme_copper_jpy",
            name="LME Copper (Metals.dev)",
            value=parsed.value,
            date=parsed.date,
            units="JPY/mt",
            frequency="Daily",
            source=self.SOURCE,
            last_updated=parsed.last_updated or parsed.date,
        )

    async def _copper_from_authority(self) -> Indicator | None:
        currencies = await self._get("currencies", {}, "metals:currencies")
        gbp_to_jpy = parse_metals_gbp_to_jpy(currencies)
        if gbp_to_jpy is None:
            logger.warning("Metals.dev currencies: missing GBP/JPY")
            return None

        now = self._today()
        points: list[tuple[str, float]] = []
        for days_back in range(1, AUTHORITY_LOOKBACK_DAYS + 1):
            day = (now - timedelta(days=days_back)).date().isoformat()
            try:
                payload = await self._get(
                    "metal/authority",
                    {"authority": "lme", "metal": "copper", "currency": "GBP", "date": day},
                    f"metals:authority:{day}",
                )
            except httpx.HTTPStatusError:
                # No fixing on weekends/holidays
                continue
            price = parse_metals_authority_price(payload)
            if price is not None:
                points.append((day, price))
            if len(points) >= 2:
                break

        if not points:
            return None

        latest_day, latest_gbp = points[0]
        latest_jpy = latest_gbp * gbp_to_jpy
        change = None
        if len(points) > 1:
            change = format_change_percent(latest_jpy, points[1][1] * gbp_to_jpy)

        stamps = currencies.get("timestamps") if isinstance(currencies, dict) else None
        stamp = str(stamps.get("currency") or "") if isinstance(stamps, dict) else ""
        return Indicator(
            id="lme_copper_jpy",
            name="LME Copper (Metals.dev)",
            value=number_text(latest_jpy),
            date=latest_day,
            units="JPY/mt",
            frequency="Daily",
            source=self.SOURCE,
            last_updated=stamp or latest_day,
            change_percent=change,
        )

    async def fetch_copper_jpy(self) -> Indicator | None:
        """LME copper in JPY/mt. Never raises."""
        if not self.enabled:
            return None

        try:
            indicator = await self._copper_from_latest()
            if indicator is not None:
                return indicator
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Metals.dev latest failed ({type(e).__name__}), trying authority endpoint")

        try:
            return await self._copper_from_authority()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Metals.dev authority failed: {type(e).__name__}: {e}")
            return None

    async def fetch_usd_jpy(self) -> Indicator | None:
        """USD/JPY from the latest currency table. Never raises."""
        if not self.enabled:
            return None

        try:
            payload = await self._latest_payload()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Metals.dev USD/JPY: {type(e).__name__}: {e}")
            return None

        parsed = parse_metals_usd_jpy(payload, self._today().date().isoformat())
        if isinstance(parsed, ParseError):
            logger.warning(f"Metals.dev USD/JPY: {parsed.reason}")
            return None
        return Indicator(
            id="usd_jpy",
            name="USD/JPY (Metals.dev)",
            value=parsed.value,
            date=parsed.date,
            units="JPY/USD",
            frequency="Daily",
            source=self.SOURCE,
            last_updated=parsed.last_updated or parsed.date,
        )
