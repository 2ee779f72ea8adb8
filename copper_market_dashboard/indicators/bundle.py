"""Economy indicator bundle: build, cache, persist and read back.

``EconomyBundleBuilder`` is constructed once per process with its settings
and handed to request handlers. It owns no module-level state; the file
paths, the clock and the HTTP transport are all injected.
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Callable

import httpx

from copper_market_dashboard.config import (
    Settings,
    FRED_COPPER_SERIES,
    FRED_USDJPY_SERIES,
    REFERENCE_TZ,
)
from copper_market_dashboard.data.alphavantage_fetcher import AlphaVantageFetcher
from copper_market_dashboard.data.cache import BundleCache, RequiredIndicator, cache_bucket
from copper_market_dashboard.data.csv_archive import CsvArchiveReader
from copper_market_dashboard.data.fred_fetcher import FredFetcher
from copper_market_dashboard.data.http import RetryPolicy
from copper_market_dashboard.data.metals_fetcher import MetalsDevFetcher
from copper_market_dashboard.data.series_export import SeriesExport
from copper_market_dashboard.data.snapshot_store import create_snapshot_store
from copper_market_dashboard.indicators.freshness import filter_fresh
from copper_market_dashboard.indicators.resolver import (
    CACHED,
    CSV,
    LIVE,
    NO_METALS_KEY,
    SUBSTITUTE,
    ResolveContext,
    Resolution,
    plans_for_mode,
    resolve_all,
)
from copper_market_dashboard.models import (
    CACHE_VERSION,
    EconomyBundle,
    Indicator,
    SnapshotPersistResult,
    SourceStatus,
)


logger = logging.getLogger(__name__)

SOURCES = ("fred", "alpha", "metals", "csv")
MODES = ("live", "csv")

_UNSET = object()


@dataclass
class RebuildResult:
    """Outcome of a forced rebuild, one entry per persistence step."""

    bundle: EconomyBundle
    local_cache: SnapshotPersistResult
    local_snapshot: SnapshotPersistResult
    remote_snapshot: SnapshotPersistResult

    def summary(self) -> dict[str, Any]:
        return {
            "ok": True,
            "updatedAt": self.bundle.updated_at,
            "cacheBucketJst": self.bundle.cache_bucket_jst,
            "sourceStatus": dict(self.bundle.source_status),
            "counts": {"fred": len(self.bundle.fred), "alpha": len(self.bundle.alpha)},
            "persisted": {
                "localCache": self.local_cache.to_dict(),
                "localSnapshot": self.local_snapshot.to_dict(),
                "remoteSnapshot": self.remote_snapshot.to_dict(),
            },
        }


@dataclass
class _Collected:
    fetched: dict[str, Indicator | None]
    raw_fred: list[Indicator]
    raw_alpha: list[Indicator]
    live: bool


def _is_current(mode: str, target_date: str | None) -> bool:
    return mode == "live" and target_date is None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EconomyBundleBuilder:
    """Builds economy bundles with cache reuse and graceful degradation."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] | None = None,
        policy: RetryPolicy | None = None,
        snapshot_store: Any = _UNSET,
        request_delay: float | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.cache = BundleCache(self.settings.cache_file)
        self.local_snapshot = BundleCache(self.settings.snapshot_file)
        self.export = SeriesExport(self.settings.publish_series_file)
        self.csv = CsvArchiveReader(self.settings.csv_archive_dir)
        self.clock = clock or _utc_now
        self.policy = policy
        self.request_delay = request_delay
        self._transport = transport
        self._snapshot_store = snapshot_store

    # ------------------------------------------------------------------
    # Time and configuration
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self.clock()

    def bucket(self) -> str:
        return cache_bucket(self.now())

    def today(self) -> date:
        return self.now().astimezone(REFERENCE_TZ).date()

    def required_indicators(self) -> list[RequiredIndicator]:
        """Indicators a cached bundle must carry for each configured source."""
        required = []
        if self.settings.has_metals():
            required.append(RequiredIndicator("fred", "lme_copper_jpy", frozenset({"Metals.dev"})))
        if self.settings.has_alpha_vantage():
            required.append(
                RequiredIndicator("alpha", "usd_jpy", frozenset({"Alpha Vantage", "Metals.dev"}))
            )
        return required

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self.settings.http_timeout
        ) as client:
            yield client

    def _store(self, client: httpx.AsyncClient):
        if self._snapshot_store is not _UNSET:
            return self._snapshot_store
        return create_snapshot_store(self.settings, client=client, export=self.export, policy=self.policy)

    # ------------------------------------------------------------------
    # Live collection and resolution
    # ------------------------------------------------------------------

    async def _collect(self, client: httpx.AsyncClient, mode: str, target: str) -> _Collected:
        csv_readings = await asyncio.to_thread(self.csv.read_all_at, target)
        fetched: dict[str, Indicator | None] = {f"csv:{k}": v for k, v in csv_readings.items()}

        # Past dates in CSV mode stay point-in-time: no live data mixed in
        live = mode == "live" or target == self.today().isoformat()
        if not live:
            logger.info(f"CSV mode at {target}: live sources skipped")
            return _Collected(fetched, [], [], live=False)

        fred = FredFetcher(self.settings, client=client, policy=self.policy)
        alpha = AlphaVantageFetcher(
            self.settings, client=client, policy=self.policy, request_delay=self.request_delay
        )
        metals = MetalsDevFetcher(self.settings, client=client, policy=self.policy)

        jobs = {
            "metals:lme_copper_jpy": metals.fetch_copper_jpy(),
            "metals:usd_jpy": metals.fetch_usd_jpy(),
            "fred": fred.fetch_indicators(),
            "alpha": alpha.fetch_indicators(),
        }
        if not self.settings.has_metals():
            # Substitutes only stand in for Metals.dev
            jobs[f"fred:{FRED_COPPER_SERIES}"] = fred.fetch_series(FRED_COPPER_SERIES)
            jobs[f"fred:{FRED_USDJPY_SERIES}"] = fred.fetch_series(FRED_USDJPY_SERIES)

        results = await asyncio.gather(*jobs.values(), return_exceptions=True)
        out: dict[str, Any] = {}
        for label, result in zip(jobs, results):
            if isinstance(result, BaseException):
                logger.error(f"Adapter {label} raised {type(result).__name__}: {result}")
                result = [] if label in ("fred", "alpha") else None
            out[label] = result

        today = self.today()
        raw_fred = filter_fresh(out.pop("fred"), today)
        raw_alpha = filter_fresh(out.pop("alpha"), today)
        fetched.update(out)
        for indicator in raw_alpha:
            fetched[f"alpha:{indicator.id}"] = indicator
        return _Collected(fetched, raw_fred, raw_alpha, live=True)

    async def _history(self, store, cached: dict[str, Indicator], ids: list[str]) -> dict[str, list[Indicator]]:
        """Older values for cached records that lack a change figure."""
        history = {}
        for indicator_id in ids:
            record = cached.get(indicator_id)
            if record is None or record.change_percent:
                continue
            if store is not None:
                history[indicator_id] = await store.recent_values(indicator_id, 10)
            else:
                history[indicator_id] = self.export.recent_values(indicator_id, 10)
        return history

    def _source_status(
        self, mode: str, collected: _Collected, resolutions: dict[str, Resolution]
    ) -> dict[str, str]:
        configured = {
            "fred": self.settings.has_fred(),
            "alpha": self.settings.has_alpha_vantage(),
            "metals": self.settings.has_metals(),
        }
        delivered = {
            "fred": bool(collected.raw_fred),
            "alpha": bool(collected.raw_alpha),
            "metals": any(
                collected.fetched.get(k) for k in ("metals:lme_copper_jpy", "metals:usd_jpy")
            ),
        }
        fell_back = any(
            r.strategy.kind in (CACHED, SUBSTITUTE) or (r.strategy.kind == CSV and mode == "live")
            for r in resolutions.values()
        )

        status = {}
        for name in ("fred", "alpha", "metals"):
            if not configured[name] or not collected.live:
                status[name] = SourceStatus.DISABLED
            elif delivered[name]:
                status[name] = SourceStatus.OK
            elif fell_back:
                status[name] = SourceStatus.FALLBACK
            else:
                status[name] = SourceStatus.EMPTY
        has_csv = any(k.startswith("csv:") and v for k, v in collected.fetched.items())
        status["csv"] = SourceStatus.OK if has_csv else SourceStatus.EMPTY
        status["mode"] = mode
        return status

    async def _build_fresh(self, mode: str = "live", target_date: str | None = None) -> EconomyBundle:
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
        target = target_date or self.today().isoformat()
        bucket = target_date or self.bucket()

        previous = self.cache.read_any()
        cached = {i.id: i for i in previous.indicators} if previous else {}
        plans = plans_for_mode(mode)
        flags = frozenset() if self.settings.has_metals() else frozenset({NO_METALS_KEY})

        async with self._session() as client:
            collected = await self._collect(client, mode, target)
            history = await self._history(self._store(client), cached, [p.id for p in plans])

        ctx = ResolveContext(fetched=collected.fetched, cached=cached, history=history, flags=flags)
        fred, alpha, resolutions = resolve_all(plans, ctx, collected.raw_fred, collected.raw_alpha)
        for indicator_id, resolution in resolutions.items():
            if resolution.strategy.kind != LIVE:
                logger.info(f"{indicator_id}: resolved via {resolution.strategy.name}")

        bundle = EconomyBundle(
            updated_at=self.now().isoformat(),
            cache_bucket_jst=bucket,
            fred=tuple(fred),
            alpha=tuple(alpha),
            source_status=self._source_status(mode, collected, resolutions),
            cache_version=CACHE_VERSION,
        )
        logger.info(f"Built bundle {bucket}: {len(bundle.fred)} fred, {len(bundle.alpha)} alpha")
        return bundle

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def build(self, force: bool = False, mode: str = "live", target_date: str | None = None) -> EconomyBundle:
        """
        Cached bundle for the current bucket, or a freshly built one.

        With ``force`` (or in CSV mode) the cache is never reused. Only a live
        build of the current bucket replaces the local cache file; point-in-time
        builds leave it alone.
        """
        current = _is_current(mode, target_date)
        if not force and current:
            cached = self.cache.read_valid(self.bucket(), self.required_indicators())
            if cached is not None:
                return cached

        bundle = await self._build_fresh(mode, target_date)
        if current:
            self.cache.write(bundle)
        return bundle

    async def rebuild(self, target_date: str | None = None, mode: str = "live") -> RebuildResult:
        """
        Forced rebuild persisted to the local cache, the local snapshot and the remote store.

        Backfills (CSV mode or an explicit date) skip the local cache so the
        current bucket keeps serving the live bundle.
        """
        bundle = await self._build_fresh(mode, target_date)
        if _is_current(mode, target_date):
            local_cache = self.cache.write(bundle)
        else:
            local_cache = SnapshotPersistResult(ok=True, action="skipped")
        local_snapshot = self.local_snapshot.write(bundle)

        async with self._session() as client:
            store = self._store(client)
            if store is None:
                remote = SnapshotPersistResult(ok=False, action="skipped", error="snapshot store disabled")
            else:
                remote = await store.upsert(bundle)

        return RebuildResult(bundle, local_cache, local_snapshot, remote)

    async def _read_remote_snapshot(self) -> EconomyBundle | None:
        try:
            async with self._session() as client:
                store = self._store(client)
                return await store.read_latest() if store is not None else None
        except (OSError, sqlite3.Error, httpx.HTTPError, ValueError) as e:
            logger.error(f"Remote snapshot unavailable: {e}")
            return None

    async def get_bundle(self) -> EconomyBundle:
        """
        Bundle for page rendering. Never raises.

        Read order: static series export, remote snapshot (production only),
        local snapshot file (opt-in), live build (opt-in, non-production),
        last local cache of any age, empty bundle.
        """
        now_iso = self.now().isoformat()
        bucket = self.bucket()

        bundle = self.export.to_bundle(now_iso, bucket) if self.export.has_data() else None
        if bundle is not None:
            return bundle

        if self.settings.is_production():
            bundle = await self._read_remote_snapshot()
            if bundle is not None:
                return bundle

        if self.settings.allow_local_snapshot:
            bundle = self.local_snapshot.read_any()
            if bundle is not None and not bundle.is_empty():
                return replace(bundle, source_status={**bundle.source_status, "mode": "local_snapshot"})

        if self.settings.allow_live_fetch and not self.settings.is_production():
            try:
                return await self.build()
            except Exception:
                logger.exception("Live build failed, falling back to cache")

        bundle = self.cache.read_any()
        if bundle is not None:
            return bundle

        logger.warning("No economy data available from any source")
        return EconomyBundle.empty(now_iso, bucket, list(SOURCES))


def main() -> None:
    """CLI entry point for building the economy bundle."""
    import argparse
    import json
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Build the economy indicator bundle")
    parser.add_argument("--force", action="store_true", help="Rebuild and persist, ignoring the cache")
    parser.add_argument("--mode", choices=MODES, default="live", help="live (default) or csv-first")
    parser.add_argument("--date", type=str, help="Point-in-time date for csv mode (YYYY-MM-DD)")
    parser.add_argument("--status", action="store_true", help="Show the current read-path bundle and exit")
    args = parser.parse_args()

    if args.date:
        try:
            date.fromisoformat(args.date)
        except ValueError:
            print(f"Invalid --date: {args.date}")
            sys.exit(1)

    settings = Settings()
    try:
        settings.validate()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    builder = EconomyBundleBuilder(settings)

    if args.status:
        bundle = asyncio.run(builder.get_bundle())
        print(f"\nBundle {bundle.cache_bucket_jst} (mode={bundle.mode}, updated {bundle.updated_at})")
        print("-" * 70)
        for indicator in bundle.indicators:
            change = indicator.change_percent or ""
            print(f"{indicator.id:20} | {indicator.value:>14} | {indicator.date:10} | {change:>8} | {indicator.source}")
        return

    if args.force:
        result = asyncio.run(builder.rebuild(args.date, args.mode))
        print(json.dumps(result.summary(), indent=2, ensure_ascii=False))
    else:
        bundle = asyncio.run(builder.build(mode=args.mode, target_date=args.date))
        print(f"\nDone. {len(bundle.fred)} fred / {len(bundle.alpha)} alpha indicators")
        print(f"Bucket: {bundle.cache_bucket_jst}  Status: {bundle.source_status}")


if __name__ == "__main__":
    main()
