"""Durable snapshot stores: one record per bucket date, upserted.

Two backends share the same async interface:

* ``MicrocmsSnapshotStore`` - headless CMS list API over HTTP.
* ``SqliteSnapshotStore`` - local SQLite database.

Both look up the record for a date before writing, so a date never gets
two records. Recent-value lookups fall back to the static series export
when the store has nothing.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from copper_market_dashboard.config import Settings, ALPHA_VANTAGE_TASKS
from copper_market_dashboard.data.http import AsyncProvider, RetryPolicy, get_json, request_json
from copper_market_dashboard.data.series_export import MAX_RECENT, SeriesExport
from copper_market_dashboard.models import (
    CACHE_VERSION,
    EconomyBundle,
    Indicator,
    SnapshotPersistResult,
)


logger = logging.getLogger(__name__)


def split_indicators(indicators: list[Indicator]) -> tuple[list[Indicator], list[Indicator]]:
    """Split a flat indicator list back into (fred, alpha) families by id."""
    fred, alpha = [], []
    for indicator in indicators:
        (alpha if indicator.id in ALPHA_VANTAGE_TASKS else fred).append(indicator)
    return fred, alpha


def parse_json_field(value: Any, fallback: Any) -> Any:
    """Decode a field that may hold JSON text or an already-decoded value."""
    if value is None:
        return fallback
    if isinstance(value, (list, dict)):
        return value
    if not isinstance(value, str) or not value.strip():
        return fallback
    try:
        return json.loads(value)
    except ValueError:
        return fallback


def _load_indicators(value: Any) -> list[Indicator]:
    out = []
    for item in parse_json_field(value, []):
        try:
            out.append(Indicator.from_dict(item))
        except (KeyError, TypeError):
            continue
    return out


def snapshot_payload(bundle: EconomyBundle, date: str) -> dict[str, str]:
    return {
        "date": date,
        "cacheBucketJst": date,
        "updatedAtSource": bundle.updated_at,
        "sourceStatus": json.dumps(bundle.source_status, ensure_ascii=False),
        "indicators": json.dumps([i.to_dict() for i in bundle.indicators], ensure_ascii=False),
    }


def bundle_from_record(record: dict[str, Any]) -> EconomyBundle | None:
    """Rebuild a bundle from a stored record; None when it holds no indicators."""
    fred, alpha = split_indicators(_load_indicators(record.get("indicators")))
    if not fred and not alpha:
        return None
    status = parse_json_field(record.get("sourceStatus"), {})
    status = {str(k): str(v) for k, v in status.items()} if isinstance(status, dict) else {}
    status["mode"] = "snapshot"
    bucket = str(record.get("cacheBucketJst") or record.get("date") or "").strip()
    updated_at = str(record.get("updatedAtSource") or record.get("updatedAt") or "").strip()
    return EconomyBundle(
        updated_at=updated_at or datetime.now(timezone.utc).isoformat(),
        cache_bucket_jst=bucket,
        fred=tuple(fred),
        alpha=tuple(alpha),
        source_status=status,
        cache_version=CACHE_VERSION,
    )


def recent_from_records(
    records: list[dict[str, Any]], indicator_id: str, limit: int
) -> list[Indicator]:
    """First occurrence of an indicator per observation date, newest record first."""
    hits, seen = [], set()
    for record in records:
        hit = next((i for i in _load_indicators(record.get("indicators")) if i.id == indicator_id), None)
        if hit is None:
            continue
        key = hit.date or str(record.get("date") or "")
        if key in seen:
            continue
        seen.add(key)
        hits.append(hit)
        if len(hits) >= limit:
            break
    return hits


class MicrocmsSnapshotStore(AsyncProvider):
    """Snapshot records in a microCMS list API endpoint."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
        export: SeriesExport | None = None,
    ) -> None:
        self.settings = settings or Settings()
        super().__init__(client, policy, timeout=self.settings.http_timeout)
        self.export = export

    @property
    def enabled(self) -> bool:
        return self.settings.has_microcms()

    @property
    def base_url(self) -> str:
        return (
            f"https://{self.settings.microcms_service_domain}.microcms.io"
            f"/api/v1/{self.settings.microcms_snapshots_endpoint}"
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-MICROCMS-API-KEY": self.settings.microcms_api_key}

    async def _list(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        data = await get_json(
            self.client, self.base_url, params, headers=self._headers,
            policy=self.policy, label="microcms:list",
        )
        contents = data.get("contents") if isinstance(data, dict) else None
        return [c for c in contents if isinstance(c, dict)] if isinstance(contents, list) else []

    async def find_by_date(self, date: str) -> str | None:
        rows = await self._list({"filters": f"date[equals]{date}", "limit": 1})
        record_id = str(rows[0].get("id") or "").strip() if rows else ""
        return record_id or None

    async def upsert(self, bundle: EconomyBundle) -> SnapshotPersistResult:
        if not self.enabled:
            return SnapshotPersistResult(ok=False, action="skipped", error="microcms snapshot env missing")
        date = bundle.cache_bucket_jst.strip()
        if not date:
            return SnapshotPersistResult(ok=False, action="skipped", error="snapshot date is empty")

        payload = snapshot_payload(bundle, date)
        try:
            existing_id = await self.find_by_date(date)
            if existing_id:
                await request_json(
                    self.client, "PATCH", f"{self.base_url}/{existing_id}",
                    headers=self._headers, json=payload, policy=self.policy, label="microcms:patch",
                )
                logger.info(f"Snapshot {date} updated ({existing_id})")
                return SnapshotPersistResult(ok=True, action="updated", id=existing_id)

            created = await request_json(
                self.client, "POST", self.base_url,
                headers=self._headers, json=payload, policy=self.policy, label="microcms:post",
            )
            created_id = str(created.get("id") or "") if isinstance(created, dict) else ""
            logger.info(f"Snapshot {date} created ({created_id})")
            return SnapshotPersistResult(ok=True, action="created", id=created_id)
        except httpx.HTTPStatusError as e:
            logger.error(f"Snapshot upsert failed: HTTP {e.response.status_code}")
            return SnapshotPersistResult(ok=False, error=f"HTTP {e.response.status_code}: {e.response.text}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Snapshot upsert failed: {e}")
            return SnapshotPersistResult(ok=False, error=str(e))

    async def read_latest(self) -> EconomyBundle | None:
        if not self.enabled:
            return None
        try:
            rows = await self._list({"orders": "-date", "limit": 1})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Snapshot read failed: {type(e).__name__}: {e}")
            return None
        return bundle_from_record(rows[0]) if rows else None

    async def recent_values(self, indicator_id: str, limit: int = 10) -> list[Indicator]:
        limit = min(max(limit, 1), MAX_RECENT)
        hits: list[Indicator] = []
        if self.enabled:
            try:
                rows = await self._list({"orders": "-date", "limit": limit})
                hits = recent_from_records(rows, indicator_id, limit)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Snapshot history read failed: {type(e).__name__}: {e}")
        if not hits and self.export is not None:
            return self.export.recent_values(indicator_id, limit)
        return hits


class SqliteSnapshotStore:
    """Snapshot records in a local SQLite database."""

    def __init__(self, db_path: Path, export: SeriesExport | None = None) -> None:
        self.db_path = Path(db_path)
        self.export = export
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS economy_snapshots (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL UNIQUE,
                    cache_bucket_jst TEXT NOT NULL,
                    updated_at_source TEXT,
                    source_status TEXT,
                    indicators TEXT NOT NULL,
                    written_at TEXT NOT NULL
                )
            """)

    @staticmethod
    def _record(row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "date": row["date"],
            "cacheBucketJst": row["cache_bucket_jst"],
            "updatedAtSource": row["updated_at_source"],
            "sourceStatus": row["source_status"],
            "indicators": row["indicators"],
        }

    def find_by_date(self, date: str) -> str | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT id FROM economy_snapshots WHERE date = ?", (date,)
            ).fetchone()
        return str(row["id"]) if row else None

    async def upsert(self, bundle: EconomyBundle) -> SnapshotPersistResult:
        date = bundle.cache_bucket_jst.strip()
        if not date:
            return SnapshotPersistResult(ok=False, action="skipped", error="snapshot date is empty")

        payload = snapshot_payload(bundle, date)
        written_at = datetime.now(timezone.utc).isoformat()
        try:
            existing_id = self.find_by_date(date)
            with self._get_connection() as conn:
                if existing_id:
                    conn.execute(
                        """
                        UPDATE economy_snapshots
                        SET cache_bucket_jst = ?, updated_at_source = ?, source_status = ?,
                            indicators = ?, written_at = ?
                        WHERE id = ?
                        """,
                        (
                            payload["cacheBucketJst"],
                            payload["updatedAtSource"],
                            payload["sourceStatus"],
                            payload["indicators"],
                            written_at,
                            int(existing_id),
                        ),
                    )
                    return SnapshotPersistResult(ok=True, action="updated", id=existing_id)

                cursor = conn.execute(
                    """
                    INSERT INTO economy_snapshots
                    (date, cache_bucket_jst, updated_at_source, source_status, indicators, written_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        date,
                        payload["cacheBucketJst"],
                        payload["updatedAtSource"],
                        payload["sourceStatus"],
                        payload["indicators"],
                        written_at,
                    ),
                )
                return SnapshotPersistResult(ok=True, action="created", id=str(cursor.lastrowid))
        except sqlite3.Error as e:
            logger.error(f"Snapshot upsert failed: {e}")
            return SnapshotPersistResult(ok=False, error=str(e))

    def _latest_records(self, limit: int) -> list[dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM economy_snapshots ORDER BY date DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._record(r) for r in rows]

    async def read_latest(self) -> EconomyBundle | None:
        try:
            records = self._latest_records(1)
        except sqlite3.Error as e:
            logger.warning(f"Snapshot read failed: {e}")
            return None
        return bundle_from_record(records[0]) if records else None

    async def recent_values(self, indicator_id: str, limit: int = 10) -> list[Indicator]:
        limit = min(max(limit, 1), MAX_RECENT)
        try:
            hits = recent_from_records(self._latest_records(limit), indicator_id, limit)
        except sqlite3.Error as e:
            logger.warning(f"Snapshot history read failed: {e}")
            hits = []
        if not hits and self.export is not None:
            return self.export.recent_values(indicator_id, limit)
        return hits

    def get_status(self) -> list[dict[str, Any]]:
        """Stored snapshot dates with indicator counts, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT date, indicators, written_at FROM economy_snapshots ORDER BY date DESC"
            ).fetchall()
        return [
            {
                "date": row["date"],
                "indicator_count": len(parse_json_field(row["indicators"], [])),
                "written_at": row["written_at"],
            }
            for row in rows
        ]


def create_snapshot_store(
    settings: Settings,
    client: httpx.AsyncClient | None = None,
    export: SeriesExport | None = None,
    policy: RetryPolicy | None = None,
):
    """Store selected by ``SNAPSHOT_BACKEND``; None when disabled."""
    if settings.snapshot_backend == "sqlite":
        return SqliteSnapshotStore(settings.snapshot_db_path, export=export)
    if settings.snapshot_backend == "microcms":
        return MicrocmsSnapshotStore(settings, client=client, policy=policy, export=export)
    return None
