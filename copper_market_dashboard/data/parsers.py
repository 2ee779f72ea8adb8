"""Parsers for provider payloads.

Every parser returns either a ``ParsedObservation`` or a ``ParseError``;
none of them raise on malformed input. Missing-value handling (FRED's
``"."`` placeholder, empty strings, non-numeric text) is centralised in
``latest_pair`` so each provider only has to say where its points live.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Iterable, Union


MISSING_MARKERS = frozenset({"", ".", "na", "n/a", "-", "null", "nan", "none"})


@dataclass(frozen=True)
class ParsedObservation:
    """Latest observation plus the previous valid one, if any."""

    value: str
    date: str
    prev_value: str | None = None
    prev_date: str | None = None
    last_updated: str | None = None
    change_percent: str | None = None


@dataclass(frozen=True)
class ParseError:
    reason: str


ParseResult = Union[ParsedObservation, ParseError]


def is_missing(raw: Any) -> bool:
    if raw is None:
        return True
    return str(raw).strip().lower() in MISSING_MARKERS


def parse_number(raw: Any) -> float | None:
    """Finite float from text (thousands separators allowed), else None."""
    if is_missing(raw):
        return None
    try:
        number = float(str(raw).replace(",", "").strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def number_text(value: float) -> str:
    """Text form used for derived (converted) values."""
    rounded = round(value, 6)
    if rounded.is_integer():
        return str(int(rounded))
    return str(rounded)


def format_change_percent(current: Any, previous: Any) -> str | None:
    """Signed percent change, e.g. ``+10.00%``. None when undefined."""
    cur = parse_number(current)
    prev = parse_number(previous)
    if cur is None or prev is None or prev == 0:
        return None
    delta = (cur - prev) / abs(prev) * 100
    if not math.isfinite(delta):
        return None
    sign = "+" if delta >= 0 else ""
    return f"{sign}{delta:.2f}%"


def latest_pair(points: Iterable[tuple[str, Any]], *, numeric: bool = True) -> ParseResult:
    """Pick the two most recent valid (date, value) points.

    Points with a missing marker (or, when ``numeric``, a non-numeric value)
    are dropped before selection. Dates are ISO strings, so they sort
    lexicographically.
    """
    valid = []
    for date_text, raw in points:
        date_text = str(date_text or "").strip()[:10]
        if not date_text or is_missing(raw):
            continue
        if numeric and parse_number(raw) is None:
            continue
        valid.append((date_text, str(raw).strip()))
    if not valid:
        return ParseError("no valid observations")

    valid.sort(key=lambda p: p[0], reverse=True)
    latest_date, latest_value = valid[0]
    prev_date, prev_value = valid[1] if len(valid) > 1 else (None, None)
    return ParsedObservation(
        value=latest_value,
        date=latest_date,
        prev_value=prev_value,
        prev_date=prev_date,
        change_percent=format_change_percent(latest_value, prev_value),
    )


def parse_fred_observations(payload: Any) -> ParseResult:
    if not isinstance(payload, dict):
        return ParseError("payload is not an object")
    observations = payload.get("observations")
    if not isinstance(observations, list):
        return ParseError("missing observations")
    return latest_pair(
        (obs.get("date"), obs.get("value")) for obs in observations if isinstance(obs, dict)
    )


def parse_fred_series_info(payload: Any) -> dict[str, str]:
    """Units/frequency/last_updated from a ``/fred/series`` payload (empty strings when absent)."""
    info: dict[str, Any] = {}
    if isinstance(payload, dict):
        seriess = payload.get("seriess")
        if isinstance(seriess, list) and seriess and isinstance(seriess[0], dict):
            info = seriess[0]
    return {
        "units": str(info.get("units") or ""),
        "frequency": str(info.get("frequency") or ""),
        "last_updated": str(info.get("last_updated") or ""),
    }


def parse_av_daily(payload: Any, series_key: str) -> ParseResult:
    """Alpha Vantage daily series (``Time Series (Daily)`` / ``Time Series FX (Daily)``)."""
    if not isinstance(payload, dict):
        return ParseError("payload is not an object")
    for key in ("Error Message", "Note", "Information"):
        if key in payload:
            return ParseError(f"{key}: {payload[key]}")
    series = payload.get(series_key)
    if not isinstance(series, dict) or not series:
        return ParseError(f"missing {series_key}")

    result = latest_pair(
        (day, row.get("4. close")) for day, row in series.items() if isinstance(row, dict)
    )
    if isinstance(result, ParseError):
        return result

    meta = payload.get("Meta Data") if isinstance(payload.get("Meta Data"), dict) else {}
    last_refreshed = ""
    for key, value in meta.items():
        if key.endswith("Last Refreshed"):
            last_refreshed = str(value)
            break
    return ParsedObservation(
        value=result.value,
        date=result.date,
        prev_value=result.prev_value,
        prev_date=result.prev_date,
        last_updated=last_refreshed or result.date,
        change_percent=result.change_percent,
    )


def parse_av_sector(payload: Any, today: str) -> ParseResult:
    """Real-time sector ranking. The value is the ranking object as JSON text."""
    if not isinstance(payload, dict):
        return ParseError("payload is not an object")
    sector = payload.get("Rank A: Real-Time Performance")
    if not isinstance(sector, dict) or not sector:
        return ParseError("missing real-time performance")
    meta = payload.get("Meta Data") if isinstance(payload.get("Meta Data"), dict) else {}
    return ParsedObservation(
        value=json.dumps(sector, ensure_ascii=False, sort_keys=True),
        date=today,
        last_updated=str(meta.get("Last Refreshed") or today),
    )


def _metals_timestamp(payload: dict, *keys: str) -> str:
    stamps = payload.get("timestamps") if isinstance(payload.get("timestamps"), dict) else {}
    for key in keys:
        if stamps.get(key):
            return str(stamps[key])
    return ""


def parse_metals_copper_jpy(payload: Any, today: str) -> ParseResult:
    """LME copper in JPY/mt from the ``/v1/latest`` payload (USD/kg + USD-per-currency table)."""
    if not isinstance(payload, dict):
        return ParseError("payload is not an object")
    metals = payload.get("metals") if isinstance(payload.get("metals"), dict) else {}
    currencies = payload.get("currencies") if isinstance(payload.get("currencies"), dict) else {}
    usd_per_kg = parse_number(metals.get("lme_copper", metals.get("copper")))
    usd_per_jpy = parse_number(currencies.get("JPY"))
    if usd_per_kg is None:
        return ParseError("missing copper price")
    if usd_per_jpy is None or usd_per_jpy <= 0:
        return ParseError("missing JPY rate")

    jpy_per_mt = usd_per_kg / usd_per_jpy * 1000
    stamp = _metals_timestamp(payload, "metal")
    return ParsedObservation(
        value=number_text(jpy_per_mt),
        date=stamp[:10] or today,
        last_updated=stamp or None,
    )


def parse_metals_usd_jpy(payload: Any, today: str) -> ParseResult:
    if not isinstance(payload, dict):
        return ParseError("payload is not an object")
    currencies = payload.get("currencies") if isinstance(payload.get("currencies"), dict) else {}
    usd_per_jpy = parse_number(currencies.get("JPY"))
    if usd_per_jpy is None or usd_per_jpy <= 0:
        return ParseError("missing JPY rate")
    stamp = _metals_timestamp(payload, "currency", "metal")
    return ParsedObservation(
        value=number_text(1 / usd_per_jpy),
        date=stamp[:10] or today,
        last_updated=stamp or None,
    )


def parse_metals_authority_price(payload: Any) -> float | None:
    """Copper price from the LME ``/v1/metal/authority`` payload."""
    if not isinstance(payload, dict):
        return None
    for container in ("rates", "metals"):
        values = payload.get(container)
        if isinstance(values, dict):
            number = parse_number(values.get("copper"))
            if number is not None:
                return number
    return parse_number(payload.get("price"))


def parse_metals_gbp_to_jpy(payload: Any) -> float | None:
    """GBP->JPY cross rate from the ``/v1/currencies`` table."""
    if not isinstance(payload, dict):
        return None
    rates = payload.get("rates") or payload.get("currencies") or {}
    if not isinstance(rates, dict):
        return None
    gbp = parse_number(rates.get("GBP"))
    jpy = parse_number(rates.get("JPY"))
    if gbp is None or jpy is None or gbp == 0:
        return None
    return jpy / gbp
