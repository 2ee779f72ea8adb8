"""Local JSON file cache for economy bundles."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from copper_market_dashboard.config import BUCKET_CUTOVER_HOUR, REFERENCE_TZ
from copper_market_dashboard.models import CACHE_VERSION, EconomyBundle, SnapshotPersistResult


logger = logging.getLogger(__name__)


def cache_bucket(now: datetime, cutover_hour: int = BUCKET_CUTOVER_HOUR) -> str:
    """
    Daily bucket key (YYYY-MM-DD) for a point in time.

    The day rolls over at ``cutover_hour`` in the reference timezone, so
    11:59 and 12:00 on the same calendar day fall in different buckets.
    Naive datetimes are taken as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(REFERENCE_TZ)
    day = local.date()
    if local.hour < cutover_hour:
        day -= timedelta(days=1)
    return day.isoformat()


@dataclass(frozen=True)
class RequiredIndicator:
    """An indicator a cached bundle must contain while its source is configured."""

    family: str  # "fred" or "alpha"
    id: str
    sources: frozenset[str]

    def present_in(self, bundle: EconomyBundle) -> bool:
        items = bundle.fred if self.family == "fred" else bundle.alpha
        return any(i.id == self.id and i.source in self.sources for i in items)


def write_json_atomic(path: Path, payload: dict) -> None:
    """Replace ``path`` with a complete JSON document (readers never see a partial file)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class BundleCache:
    """Versioned single-slot bundle cache stored as one JSON file."""

    def __init__(self, path: Path, version: int = CACHE_VERSION) -> None:
        self.path = Path(path)
        self.version = version

    def _read_raw(self) -> dict | None:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Cache {self.path}: unreadable ({type(e).__name__})")
            return None
        if not isinstance(data, dict) or not data.get("updatedAt"):
            return None
        return data

    def read_any(self) -> EconomyBundle | None:
        """Last written bundle regardless of bucket or schema version."""
        data = self._read_raw()
        return EconomyBundle.from_dict(data) if data else None

    def read_valid(
        self, bucket: str, required: list[RequiredIndicator] | tuple = ()
    ) -> EconomyBundle | None:
        """
        Cached bundle if it can be reused for ``bucket``.

        Rejected (None) on schema version mismatch, on any indicator lacking
        a provenance timestamp, on a different bucket, or when a required
        indicator is missing.
        """
        data = self._read_raw()
        if data is None:
            return None

        reason = None
        if data.get("cacheVersion") != self.version:
            reason = f"version {data.get('cacheVersion')!r} != {self.version}"
        else:
            bundle = EconomyBundle.from_dict(data)
            if any(not i.last_updated for i in bundle.indicators):
                reason = "indicator without lastUpdated"
            elif bundle.cache_bucket_jst != bucket:
                reason = f"bucket {bundle.cache_bucket_jst!r} != {bucket!r}"
            else:
                missing = [r.id for r in required if not r.present_in(bundle)]
                if missing:
                    reason = f"required indicators missing: {missing}"

        if reason:
            logger.info(f"Cache stale: {reason}")
            return None
        logger.info(f"Cache hit for bucket {bucket}")
        return bundle

    def write(self, bundle: EconomyBundle) -> SnapshotPersistResult:
        try:
            write_json_atomic(self.path, bundle.to_dict())
        except OSError as e:
            logger.error(f"Cache write failed for {self.path}: {e}")
            return SnapshotPersistResult(ok=False, error=str(e))
        return SnapshotPersistResult(ok=True, action="written")
