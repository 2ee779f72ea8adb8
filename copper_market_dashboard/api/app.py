"""FastAPI endpoints for snapshot rebuilds and the market snapshot feed.

Run with::

    uvicorn copper_market_dashboard.api.app:app
"""

import asyncio
import hmac
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request

from copper_market_dashboard import __version__
from copper_market_dashboard.config import Settings
from copper_market_dashboard.indicators.bundle import MODES, EconomyBundleBuilder
from copper_market_dashboard.indicators.warrant import WarrantDashboardAggregator
from copper_market_dashboard.models import EconomyBundle, Indicator


logger = logging.getLogger(__name__)

# Support group: response key -> indicator id
SUPPORT_SERIES = {
    "dgs10": "DGS10",
    "vix": "VIXCLS",
    "dxy": "DTWEXBGS",
    "wti": "DCOILWTICO",
    "brent": "DCOILBRENTEU",
    "gas": "GASREGCOVW",
    "ipman": "IPMAN",
    "dgorder": "DGORDER",
    "tcu": "TCU",
    "tlrescons": "TLRESCONS",
    "houst": "HOUST",
    "permit": "PERMIT",
    "gdp": "GDP",
    "cpi": "CPIAUCSL",
    "ppi": "PPIACO",
    "chile": "CHLPROINDMISMEI",
    "peru": "PERPROINDMISMEI",
    "spy": "sp500",
}


def bearer_token(authorization: Optional[str]) -> str:
    parts = (authorization or "").strip().split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return ""


def is_authorized(expected: str, candidates: list[str], production: bool) -> bool:
    """
    Constant-time token check against any of the presented candidates.

    Without a configured token, requests pass only outside production.
    """
    if not expected:
        return not production
    expected_bytes = expected.encode()
    return any(
        hmac.compare_digest(candidate.encode(), expected_bytes)
        for candidate in candidates
        if candidate
    )


def _pick(bundle: EconomyBundle, indicator_id: str) -> Optional[dict[str, str]]:
    indicator: Indicator | None = bundle.find(indicator_id)
    return indicator.to_dict() if indicator else None


def market_snapshot_payload(bundle: EconomyBundle, warrant: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Grouped feed of the headline copper, inventory and macro figures."""
    return {
        "ok": True,
        "generatedAt": now.isoformat(),
        "cacheUpdatedAt": bundle.updated_at,
        "cacheBucketJst": bundle.cache_bucket_jst,
        "core": {
            "lme": _pick(bundle, "lme_copper_jpy"),
            "usdJpy": _pick(bundle, "usd_jpy"),
            "warrantDaily": {
                "latest": warrant["warrant"]["latest"],
                "prev": warrant["warrant"]["prev"],
                "diffPct1d": warrant["warrant"]["diffPct1d"],
                "diffPct7d": warrant["warrant"]["diffPct7d"],
            },
            "domesticTate": {
                "latest": warrant["copperTate"]["latest"],
                "prev": warrant["copperTate"]["prev"],
                "diffPct": warrant["copperTate"]["diffPct1d"],
            },
        },
        "weekly": {
            "offWarrantMonthly": {
                "latest": warrant["offWarrant"]["latest"],
                "prev": warrant["offWarrant"]["prev"],
                "diffPctMoM": warrant["offWarrant"]["diffPctMoM"],
            },
            "warrantRatio": warrant["ratio"],
            "copx": _pick(bundle, "copx"),
            "fcx": _pick(bundle, "fcx"),
            "usdCny": _pick(bundle, "usd_cny"),
        },
        "support": {key: _pick(bundle, series_id) for key, series_id in SUPPORT_SERIES.items()},
    }


def create_app(
    settings: Settings | None = None,
    builder: EconomyBundleBuilder | None = None,
    aggregator: WarrantDashboardAggregator | None = None,
) -> FastAPI:
    """Application with its services bound to ``app.state``."""
    settings = settings or Settings()
    app = FastAPI(title="Copper Market Dashboard API", version=__version__)
    app.state.settings = settings
    app.state.builder = builder or EconomyBundleBuilder(settings)
    app.state.aggregator = aggregator or WarrantDashboardAggregator(
        settings.warrant_data_dir,
        app.state.builder.export,
        monthly_ceiling=settings.warrant_monthly_ceiling,
    )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "ts": datetime.now(timezone.utc).isoformat()}

    @app.api_route("/api/economy-snapshot/rebuild", methods=["GET", "POST"])
    async def rebuild_economy_snapshot(
        request: Request,
        date_param: Optional[str] = Query(None, alias="date", description="YYYY-MM-DD"),
        mode: str = Query("live", description="live or csv"),
        authorization: Optional[str] = Header(None),
        x_economy_snapshot_token: Optional[str] = Header(None, alias="X-Economy-Snapshot-Token"),
    ) -> dict[str, Any]:
        """Force a rebuild and persist it to every configured store."""
        cfg: Settings = request.app.state.settings
        candidates = [bearer_token(authorization), (x_economy_snapshot_token or "").strip()]
        if not is_authorized(cfg.economy_snapshot_token, candidates, cfg.is_production()):
            raise HTTPException(status_code=401, detail="unauthorized")

        target_date = (date_param or "").strip() or None
        if target_date is not None:
            try:
                date.fromisoformat(target_date)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail="Invalid date, expected YYYY-MM-DD") from exc
        mode = (mode or "live").strip().lower()
        if mode not in MODES:
            raise HTTPException(status_code=400, detail=f"Invalid mode, expected one of {list(MODES)}")

        try:
            result = await request.app.state.builder.rebuild(target_date, mode)
        except Exception as exc:
            logger.exception("Economy snapshot rebuild failed")
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return result.summary()

    @app.get("/api/market-snapshot")
    async def market_snapshot(
        request: Request,
        authorization: Optional[str] = Header(None),
        x_market_snapshot_token: Optional[str] = Header(None, alias="X-Market-Snapshot-Token"),
    ) -> dict[str, Any]:
        cfg: Settings = request.app.state.settings
        candidates = [bearer_token(authorization), (x_market_snapshot_token or "").strip()]
        if not is_authorized(cfg.market_snapshot_token, candidates, cfg.is_production()):
            raise HTTPException(status_code=401, detail="unauthorized")

        bundle, warrant = await asyncio.gather(
            request.app.state.builder.get_bundle(),
            asyncio.to_thread(request.app.state.aggregator.build),
        )
        return market_snapshot_payload(bundle, warrant.to_dict(), datetime.now(timezone.utc))

    return app


app = create_app()
