"""
Validation and parsing of benchmark CSV uploads.

Files are passed as a mapping of file key (`benchmark_rates`,
`value_added_options`, `category_mapping`, `industry_sources`,
`region_mapping`) to CSV text. Parsed rows feed the quote engine's
PricingContext.
"""
import csv
import hashlib
import io
import logging
import math
import re
from datetime import date
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from backoffice.guardrails.audit_logger import EventSink, emit
from backoffice.models.benchmark import DryRunResult, ImportRowError, ImportValidationResult
from backoffice.models.quote import BenchmarkRate, ValueAddedOption

logger = logging.getLogger(__name__)

BENCHMARK_RATE_HEADERS = [
    "version_id", "mode", "service_level", "origin_country", "origin_state",
    "origin_zip3", "dest_country", "dest_state", "dest_zip3", "effective_start_date",
    "effective_end_date", "weight_min_kg", "weight_max_kg", "volume_min_cbm",
    "volume_max_cbm", "unit", "rate_benchmark", "currency", "accessorial_code",
    "source_tag", "confidence",
]

VALUE_ADDED_OPTION_HEADERS = [
    "version_id", "code", "name", "pricing_type", "unit", "default_rate",
    "currency", "category", "notes", "source_tag", "confidence",
]

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# File -> companion file it is cross-checked against
REQUIRED_COMPANIONS = {
    "benchmark_rates": ("region_mapping", "country/state"),
    "value_added_options": ("category_mapping", "category"),
}


def _read_rows(text: str):
    """(header, [(row number, row dict)]) with blank lines dropped."""
    reader = csv.DictReader(io.StringIO(text))
    header = [h.strip() for h in (reader.fieldnames or [])]
    reader.fieldnames = header
    rows = []
    for row in reader:
        cleaned = {k: (v or "").strip() for k, v in row.items() if k is not None}
        if not any(cleaned.values()):
            continue
        rows.append((reader.line_num, cleaned))
    return header, rows


def _is_number(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def _to_float(value: Optional[str]) -> float:
    if value and _is_number(value):
        return float(value)
    return 0.0


def _check_required(row: Dict[str, str], fields: List[str], errors: List[str]):
    for field in fields:
        if not row.get(field):
            errors.append(f"{field} is required")


def _check_numeric(row: Dict[str, str], fields: List[str], errors: List[str]):
    for field in fields:
        if row.get(field) and not _is_number(row[field]):
            errors.append(f"{field} must be numeric")


def _check_common(row: Dict[str, str], errors: List[str]):
    confidence = row.get("confidence")
    if confidence and (not _is_number(confidence) or not 0 <= float(confidence) <= 1):
        errors.append("confidence must be between 0 and 1")
    if row.get("currency") and row["currency"] != "USD":
        errors.append("Only USD currency supported in this phase")


def validate_benchmark_row(row: Dict[str, str]) -> List[str]:
    errors: List[str] = []
    _check_required(row, ["version_id", "mode", "origin_country", "dest_country"], errors)
    _check_numeric(row, ["weight_min_kg", "weight_max_kg", "rate_benchmark"], errors)
    _check_common(row, errors)
    for field in ("effective_start_date", "effective_end_date"):
        if row.get(field) and not ISO_DATE.match(row[field]):
            errors.append(f"{field} must be in YYYY-MM-DD format")
    return errors


def validate_value_added_row(row: Dict[str, str]) -> List[str]:
    errors: List[str] = []
    _check_required(row, ["version_id", "code", "name", "pricing_type"], errors)
    _check_numeric(row, ["default_rate"], errors)
    _check_common(row, errors)
    return errors


def _validate_file(file_name: str, text: str, expected: List[str],
                   validate_row: Callable[[Dict[str, str]], List[str]]) -> List[ImportRowError]:
    if not text or not text.strip():
        return [ImportRowError(file=file_name, row=1, errors=["File is empty"])]

    header, rows = _read_rows(text)
    row_errors = []
    missing = [h for h in expected if h not in header]
    if missing:
        row_errors.append(ImportRowError(file=file_name, row=1, errors=[f"Missing required headers: {', '.join(missing)}"]))

    for line_num, row in rows:
        errors = validate_row(row)
        if errors:
            row_errors.append(ImportRowError(file=file_name, row=line_num, errors=errors))
    return row_errors


def checksum(files: Dict[str, str]) -> str:
    combined = "|".join(f"{key}:{content}" for key, content in files.items() if content)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:16]


def current_version_id(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"v{today.year}Q{(today.month - 1) // 3 + 1}"


def parse_benchmark_rates(text: str) -> List[BenchmarkRate]:
    rates = []
    _, rows = _read_rows(text)
    for line_num, row in rows:
        try:
            rates.append(BenchmarkRate(
                version_id=row.get("version_id", ""),
                mode=row.get("mode", ""),
                service_level=row.get("service_level", ""),
                origin_country=row.get("origin_country", ""),
                origin_state=row.get("origin_state") or None,
                origin_zip3=row.get("origin_zip3") or None,
                dest_country=row.get("dest_country", ""),
                dest_state=row.get("dest_state") or None,
                dest_zip3=row.get("dest_zip3") or None,
                effective_start_date=row.get("effective_start_date", ""),
                effective_end_date=row.get("effective_end_date", ""),
                weight_min_kg=_to_float(row.get("weight_min_kg")),
                weight_max_kg=_to_float(row.get("weight_max_kg")),
                volume_min_cbm=_to_float(row.get("volume_min_cbm")),
                volume_max_cbm=_to_float(row.get("volume_max_cbm")),
                unit=row.get("unit", ""),
                rate_benchmark=_to_float(row.get("rate_benchmark")),
                currency=row.get("currency") or "USD",
                accessorial_code=row.get("accessorial_code") or None,
                source_tag=row.get("source_tag", ""),
                confidence=_to_float(row.get("confidence"))
            ))
        except ValidationError as e:
            logger.warning(f"benchmark_rates.csv row {line_num} skipped: {e.error_count()} invalid fields")
    return rates


def parse_value_added_options(text: str) -> List[ValueAddedOption]:
    options = []
    _, rows = _read_rows(text)
    for line_num, row in rows:
        try:
            options.append(ValueAddedOption(
                version_id=row.get("version_id", ""),
                code=row.get("code", ""),
                name=row.get("name", ""),
                pricing_type=row.get("pricing_type", ""),
                unit=row.get("unit", ""),
                default_rate=_to_float(row.get("default_rate")),
                currency=row.get("currency") or "USD",
                category=row.get("category", ""),
                notes=row.get("notes") or None,
                source_tag=row.get("source_tag", ""),
                confidence=_to_float(row.get("confidence"))
            ))
        except ValidationError as e:
            logger.warning(f"value_added_options.csv row {line_num} skipped: {e.error_count()} invalid fields")
    return options


class BenchmarkImporter:
    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink

    def validate(self, files: Dict[str, str]) -> ImportValidationResult:
        result = ImportValidationResult()

        if files.get("benchmark_rates") is not None:
            result.row_errors.extend(_validate_file(
                "benchmark_rates.csv", files["benchmark_rates"], BENCHMARK_RATE_HEADERS, validate_benchmark_row
            ))
        if files.get("value_added_options") is not None:
            result.row_errors.extend(_validate_file(
                "value_added_options.csv", files["value_added_options"], VALUE_ADDED_OPTION_HEADERS, validate_value_added_row
            ))

        for key, (companion, purpose) in REQUIRED_COMPANIONS.items():
            if files.get(key) is not None and files.get(companion) is None:
                result.cross_file_errors.append(f"{key}.csv requires {companion}.csv for {purpose} validation")

        result.checksum = checksum(files)

        logger.info(f"Benchmark import validated: {len(result.row_errors)} row errors, checksum {result.checksum}")
        emit(self.sink, "benchmarks_import_validated", {
            "module": "benchmarks",
            "files_count": len(files),
            "error_count": len(result.row_errors),
            "warning_count": len(result.warnings),
            "checksum": result.checksum,
        })
        return result

    def dry_run(self, files: Dict[str, str], today: Optional[date] = None) -> DryRunResult:
        """Count what a commit would insert. Nothing is written."""
        result = DryRunResult(version_id=current_version_id(today))

        if files.get("benchmark_rates"):
            count = len(parse_benchmark_rates(files["benchmark_rates"]))
            result.inserts += count
            result.preview_count += count
        if files.get("value_added_options"):
            count = len(parse_value_added_options(files["value_added_options"]))
            result.inserts += count
            result.preview_count += count

        emit(self.sink, "benchmarks_import_dry_run", {"module": "benchmarks", **result.model_dump()})
        return result
