import json

from copper_market_dashboard.data.parsers import (
    ParseError,
    ParsedObservation,
    format_change_percent,
    latest_pair,
    parse_av_daily,
    parse_av_sector,
    parse_fred_observations,
    parse_metals_copper_jpy,
    parse_metals_gbp_to_jpy,
    parse_metals_usd_jpy,
    parse_number,
)
from copper_market_dashboard.models import format_indicator_value

from conftest import av_daily, fred_observations, metals_latest


def test_change_percent_sign_and_precision() -> None:
    assert format_change_percent("110", "100") == "+10.00%"
    assert format_change_percent("90", "100") == "-10.00%"
    assert format_change_percent("100", "100") == "+0.00%"


def test_change_percent_undefined_cases() -> None:
    assert format_change_percent("5", "0") is None
    assert format_change_percent("5", None) is None
    assert format_change_percent(".", "100") is None


def test_change_percent_uses_absolute_previous() -> None:
    # -50 -> -25 is a rise of 50% of the magnitude
    assert format_change_percent("-25", "-50") == "+50.00%"


def test_parse_number_handles_separators_and_markers() -> None:
    assert parse_number("1,234.5") == 1234.5
    assert parse_number(".") is None
    assert parse_number("N/A") is None
    assert parse_number("inf") is None


def test_latest_pair_skips_sentinels() -> None:
    result = latest_pair([("2024-03-14", "."), ("2024-03-13", "4.20"), ("2024-03-12", "4.00")])

    assert isinstance(result, ParsedObservation)
    assert result.value == "4.20"
    assert result.date == "2024-03-13"
    assert result.prev_value == "4.00"
    assert result.change_percent == "+5.00%"


def test_latest_pair_only_sentinels_is_error() -> None:
    result = latest_pair([("2024-03-14", "."), ("2024-03-13", "")])
    assert isinstance(result, ParseError)


def test_fred_observations_single_point_has_no_change() -> None:
    result = parse_fred_observations(fred_observations(("2024-03-01", "310.2")))

    assert isinstance(result, ParsedObservation)
    assert result.prev_value is None
    assert result.change_percent is None


def test_fred_observations_malformed_payload() -> None:
    assert isinstance(parse_fred_observations({"error_message": "bad"}), ParseError)
    assert isinstance(parse_fred_observations(["not", "a", "dict"]), ParseError)


def test_av_daily_reads_close_and_last_refreshed() -> None:
    payload = av_daily(
        "Time Series FX (Daily)",
        {"2024-03-14": "148.50", "2024-03-13": "147.00"},
        last_refreshed="2024-03-14 16:00:00",
    )

    result = parse_av_daily(payload, "Time Series FX (Daily)")

    assert isinstance(result, ParsedObservation)
    assert result.value == "148.50"
    assert result.last_updated == "2024-03-14 16:00:00"
    assert result.change_percent == "+1.02%"


def test_av_daily_rate_limit_note_is_error() -> None:
    result = parse_av_daily({"Note": "Thank you for using Alpha Vantage!"}, "Time Series (Daily)")

    assert isinstance(result, ParseError)
    assert "Note" in result.reason


def test_av_sector_value_is_json_text() -> None:
    payload = {
        "Meta Data": {"Last Refreshed": "2024-03-14 20:00:00"},
        "Rank A: Real-Time Performance": {"Materials": "1.20%", "Energy": "-0.40%"},
    }

    result = parse_av_sector(payload, "2024-03-15")

    assert isinstance(result, ParsedObservation)
    assert json.loads(result.value)["Materials"] == "1.20%"
    assert result.date == "2024-03-15"


def test_metals_copper_converted_to_jpy_per_tonne() -> None:
    # 9 USD/kg at 0.005 USD per JPY -> 1800 JPY/kg
    payload = metals_latest(9.0, 0.005)

    result = parse_metals_copper_jpy(payload, "2024-03-15")

    assert isinstance(result, ParsedObservation)
    assert result.value == "1800000"
    assert result.date == "2024-03-15"


def test_metals_usd_jpy_inverts_rate() -> None:
    result = parse_metals_usd_jpy(metals_latest(9.0, 0.008), "2024-03-15")

    assert isinstance(result, ParsedObservation)
    assert result.value == "125"


def test_metals_missing_rate_is_error() -> None:
    payload = {"metals": {"lme_copper": 9.0}, "currencies": {}}
    assert isinstance(parse_metals_copper_jpy(payload, "2024-03-15"), ParseError)


def test_gbp_to_jpy_cross_rate() -> None:
    assert parse_metals_gbp_to_jpy({"rates": {"GBP": 0.8, "JPY": 150.0}}) == 187.5
    assert parse_metals_gbp_to_jpy({"rates": {"GBP": 0, "JPY": 150.0}}) is None


def test_format_indicator_value() -> None:
    assert format_indicator_value("") == "-"
    assert format_indicator_value("1234567") == "1,234,567"
    assert format_indicator_value("1234.5600") == "1,234.56"
    assert format_indicator_value('{"Energy": "1%"}') == '{"Energy": "1%"}'
