from pathlib import Path

from copper_market_dashboard.data.csv_archive import CsvArchiveReader

from conftest import write_csv


def _series_file(root: Path, year: int) -> Path:
    return root / "lme_copper_cash_usd_t" / f"{year}.csv"


def test_point_in_time_read_ignores_future_rows(tmp_path: Path) -> None:
    write_csv(
        _series_file(tmp_path, 2024),
        "date,value\n2024-01-02,8400\n2024-01-05,8500\n2024-01-20,9000\n",
    )
    reader = CsvArchiveReader(tmp_path)

    indicator = reader.read_at_or_before("lme_copper_usd", "2024-01-15")

    assert indicator is not None
    assert indicator.value == "8500"
    assert indicator.date == "2024-01-05"
    assert indicator.source == "CSV"
    assert indicator.units == "USD/mt"
    assert indicator.change_percent == "+1.19%"
    assert indicator.last_updated


def test_previous_value_comes_from_prior_year(tmp_path: Path) -> None:
    write_csv(_series_file(tmp_path, 2023), "date,value\n2023-12-28,8000\n2023-12-29,8200\n")
    write_csv(_series_file(tmp_path, 2024), "date,value\n2024-01-03,8610\n2024-01-10,8700\n")
    reader = CsvArchiveReader(tmp_path)

    indicator = reader.read_at_or_before("lme_copper_usd", "2024-01-05")

    assert indicator.date == "2024-01-03"
    assert indicator.change_percent == "+5.00%"


def test_target_before_first_row_of_year_uses_prior_year(tmp_path: Path) -> None:
    write_csv(_series_file(tmp_path, 2023), "date,value\n2023-12-29,8200\n")
    write_csv(_series_file(tmp_path, 2024), "date,value\n2024-01-10,8700\n")
    reader = CsvArchiveReader(tmp_path)

    indicator = reader.read_at_or_before("lme_copper_usd", "2024-01-02")

    assert indicator.date == "2023-12-29"
    assert indicator.change_percent is None


def test_byte_order_mark_and_blank_values(tmp_path: Path) -> None:
    write_csv(
        _series_file(tmp_path, 2024),
        "date,value\n2024-02-01,8100\n2024-02-02,\n2024-02-05,.\n",
        encoding="utf-8-sig",
    )
    reader = CsvArchiveReader(tmp_path)

    indicator = reader.read_at_or_before("lme_copper_usd", "2024-02-10")

    assert indicator.value == "8100"
    assert indicator.date == "2024-02-01"


def test_missing_files_and_unknown_series(tmp_path: Path) -> None:
    reader = CsvArchiveReader(tmp_path)

    assert reader.read_at_or_before("lme_copper_usd", "2024-01-15") is None
    assert reader.read_at_or_before("not_a_series", "2024-01-15") is None
    assert reader.read_at_or_before("lme_copper_usd", "not-a-date") is None
    assert reader.read_all_at("2024-01-15") == {}


def test_read_all_at_returns_only_series_with_data(tmp_path: Path) -> None:
    write_csv(tmp_path / "america_dexjpus" / "2024.csv", "DATE,DEXJPUS\n2024-03-01,150.1\n2024-03-04,150.6\n")
    reader = CsvArchiveReader(tmp_path)

    readings = reader.read_all_at("2024-03-15")

    assert list(readings) == ["usd_jpy"]
    assert readings["usd_jpy"].value == "150.6"
