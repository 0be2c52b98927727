from datetime import date

import pytest

from backoffice.tools.benchmark_import import (
    BENCHMARK_RATE_HEADERS,
    VALUE_ADDED_OPTION_HEADERS,
    BenchmarkImporter,
    parse_benchmark_rates,
    parse_value_added_options,
)

GOOD_RATE = "v2024Q3,receiving,standard,US,CA,900,US,NV,891,2024-07-01,2024-12-31,0,1000,0,10,per_unit,0.35,USD,,market,0.8"
BAD_RATE = "v2024Q3,receiving,standard,,,,US,,,2024/07/01,,abc,,,,per_unit,0.35,EUR,,market,1.5"
GOOD_OPTION = "v2024Q3,LABEL,Labeling,per_unit,per_unit,0.15,USD,VAS,,market,0.9"


def csv_text(headers, *rows):
    return "\n".join([",".join(headers), *rows]) + "\n"


@pytest.fixture
def importer(event_log):
    return BenchmarkImporter(event_log)


@pytest.fixture
def complete_files():
    return {
        "benchmark_rates": csv_text(BENCHMARK_RATE_HEADERS, GOOD_RATE),
        "value_added_options": csv_text(VALUE_ADDED_OPTION_HEADERS, GOOD_OPTION),
        "region_mapping": "country,state\nUS,CA\n",
        "category_mapping": "code,category\nLABEL,VAS\n",
    }


def test_valid_files_pass(importer, complete_files, event_log):
    result = importer.validate(complete_files)

    assert result.ok
    assert result.row_errors == []
    assert result.cross_file_errors == []
    assert len(result.checksum) == 16
    assert event_log.for_action("benchmarks_import_validated")[0].details["error_count"] == 0


def test_row_errors_reported_with_line_numbers(importer):
    files = {"benchmark_rates": csv_text(BENCHMARK_RATE_HEADERS, GOOD_RATE, "", BAD_RATE)}

    result = importer.validate(files)

    assert len(result.row_errors) == 1
    error = result.row_errors[0]
    assert error.file == "benchmark_rates.csv"
    assert error.row == 4
    assert error.errors == [
        "origin_country is required",
        "weight_min_kg must be numeric",
        "confidence must be between 0 and 1",
        "Only USD currency supported in this phase",
        "effective_start_date must be in YYYY-MM-DD format",
    ]


def test_missing_headers_and_empty_files(importer):
    result = importer.validate({
        "benchmark_rates": "version_id,mode\n",
        "value_added_options": "",
        "region_mapping": "x",
        "category_mapping": "x",
    })

    by_file = {e.file: e for e in result.row_errors}
    assert by_file["benchmark_rates.csv"].row == 1
    assert by_file["benchmark_rates.csv"].errors[0].startswith("Missing required headers: service_level, origin_country")
    assert by_file["value_added_options.csv"].errors == ["File is empty"]
    assert not result.ok


def test_cross_file_requirements(importer, complete_files):
    del complete_files["region_mapping"]
    del complete_files["category_mapping"]

    result = importer.validate(complete_files)

    assert result.cross_file_errors == [
        "benchmark_rates.csv requires region_mapping.csv for country/state validation",
        "value_added_options.csv requires category_mapping.csv for category validation",
    ]


def test_checksum_tracks_content(importer, complete_files):
    first = importer.validate(complete_files).checksum
    assert importer.validate(dict(complete_files)).checksum == first

    complete_files["category_mapping"] += "BOX,VAS\n"
    assert importer.validate(complete_files).checksum != first


def test_parse_benchmark_rates():
    rates = parse_benchmark_rates(csv_text(BENCHMARK_RATE_HEADERS, GOOD_RATE))

    assert len(rates) == 1
    rate = rates[0]
    assert rate.mode == "receiving"
    assert rate.origin_zip3 == "900"
    assert rate.dest_state == "NV"
    assert rate.rate_benchmark == 0.35
    assert rate.weight_max_kg == 1000.0
    assert rate.accessorial_code is None
    assert rate.confidence == 0.8


def test_parse_skips_rows_the_model_rejects():
    rates = parse_benchmark_rates(csv_text(BENCHMARK_RATE_HEADERS, GOOD_RATE, BAD_RATE))
    assert len(rates) == 1


def test_parse_value_added_options():
    options = parse_value_added_options(csv_text(VALUE_ADDED_OPTION_HEADERS, GOOD_OPTION))

    assert options[0].code == "LABEL"
    assert options[0].default_rate == 0.15
    assert options[0].notes is None


def test_dry_run_counts_inserts(importer, complete_files):
    result = importer.dry_run(complete_files, today=date(2024, 8, 1))

    assert result.inserts == 2
    assert result.preview_count == 2
    assert result.updates == 0
    assert result.version_id == "v2024Q3"
