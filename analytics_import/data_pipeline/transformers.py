"""Data transformers mapping exported or fetched report rows to stored records."""

import csv
import hashlib
import io
import json
import re
from typing import Any

from analytics_import.data_pipeline.adapters.base import DataSourceType
from analytics_import.data_pipeline.reports import ReportResponse

# Provider field names (GA4 and legacy Universal Analytics) to local names
GA_FIELD_MAP = {
    # GA4
    "date": "date",
    "pagePath": "page",
    "pageTitle": "title",
    "screenPageViews": "pageviews",
    "sessions": "sessions",
    "totalUsers": "visitors",
    "newUsers": "new_visitors",
    "bounceRate": "bounce_rate",
    "averageSessionDuration": "avg_duration",
    "sessionSource": "source",
    "sessionMedium": "medium",
    "country": "country",
    "region": "region",
    "city": "city",
    "deviceCategory": "device",
    "browser": "browser",
    "operatingSystem": "os",
    # Universal Analytics (legacy)
    "ga:date": "date",
    "ga:pagePath": "page",
    "ga:pageTitle": "title",
    "ga:pageviews": "pageviews",
    "ga:sessions": "sessions",
    "ga:users": "visitors",
    "ga:newUsers": "new_visitors",
    "ga:bounceRate": "bounce_rate",
    "ga:avgSessionDuration": "avg_duration",
    "ga:source": "source",
    "ga:medium": "medium",
    "ga:country": "country",
    "ga:region": "region",
    "ga:city": "city",
    "ga:deviceCategory": "device",
    "ga:browser": "browser",
    "ga:operatingSystem": "os",
}

UNKNOWN_DATE_KEY = "unknown"

# Fits historical_records.date_key; longer dimension parts are hashed
MAX_STORAGE_KEY_LENGTH = 255

_YYYYMMDD = re.compile(r"[0-9]{8}")
_US_DATE = re.compile(r"([0-9]{1,2})/([0-9]{1,2})/([0-9]{4})")


def map_field(name: str) -> str:
    """Map a provider field name to the local name.

    Unknown names are lowercased with whitespace runs replaced by ``_``.
    """
    if name in GA_FIELD_MAP:
        return GA_FIELD_MAP[name]
    return re.sub(r"\s+", "_", name.strip().lower())


def normalize_date(value: str) -> str:
    """Normalize a date to YYYY-MM-DD.

    Handles the provider's default ``YYYYMMDD`` and ``MM/DD/YYYY``; anything
    else is returned unchanged.
    """
    if not isinstance(value, str):
        return value

    if _YYYYMMDD.fullmatch(value):
        return f"{value[:4]}-{value[4:6]}-{value[6:8]}"

    match = _US_DATE.fullmatch(value)
    if match:
        month, day, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    return value


def parse_number(value: Any) -> int | float | None:
    """Parse a metric value, tolerating thousands separators.

    Returns None when the value is not numeric.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return value
    if not isinstance(value, str):
        return None

    text = value.replace(",", "").strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def map_record(record: dict[str, Any]) -> dict[str, Any]:
    """Rename the fields of one flat record and normalize its date."""
    mapped = {map_field(key): value for key, value in record.items()}
    if mapped.get("date"):
        mapped["date"] = normalize_date(str(mapped["date"]))
    return mapped


def report_to_records(report: ReportResponse) -> list[dict[str, Any]]:
    """Flatten report rows into records keyed by local field names.

    Dimension values stay strings; metric values become numbers (0 when the
    provider sends something unparsable).
    """
    dimensions = dimension_fields(report)
    metrics = [map_field(header.name) for header in report.metric_headers]

    records = []
    for row in report.rows:
        record: dict[str, Any] = {}
        for name, value in zip(dimensions, row.dimension_values):
            record[name] = value
        for name, value in zip(metrics, row.metric_values):
            number = parse_number(value)
            record[name] = number if number is not None else 0
        if record.get("date"):
            record["date"] = normalize_date(record["date"])
        records.append(record)
    return records


def parse_json_payload(data: Any) -> list[dict[str, Any]]:
    """Parse an exported JSON payload.

    Accepts a list of flat records, an API-style report body
    (``rows`` + ``dimensionHeaders``), a single flat record, or any of these
    encoded as a JSON string.
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e.msg}") from e

    if isinstance(data, list):
        if not all(isinstance(row, dict) for row in data):
            raise ValueError("Unrecognized JSON format")
        return [map_record(row) for row in data]

    if isinstance(data, dict):
        if "rows" in data and "dimensionHeaders" in data:
            return report_to_records(ReportResponse.from_payload(data))
        return [map_record(data)]

    raise ValueError("Unrecognized JSON format")


def parse_csv_payload(text: str) -> list[dict[str, Any]]:
    """Parse an exported CSV payload (GA4 or Universal Analytics exports)."""
    if not isinstance(text, str):
        raise ValueError("CSV data must be a string")

    lines = [line for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 2:
        raise ValueError("CSV must have at least a header row and one data row")

    reader = csv.reader(io.StringIO("\n".join(lines)), skipinitialspace=True)
    headers = [map_field(h) for h in next(reader)]

    records = []
    for values in reader:
        record: dict[str, Any] = {}
        for idx, name in enumerate(headers):
            value = values[idx].strip() if idx < len(values) else ""
            if name == "date":
                record[name] = value
                continue
            number = parse_number(value)
            record[name] = number if number is not None else value

        if record.get("date"):
            record["date"] = normalize_date(record["date"])
        records.append(record)

    return records


def parse_import_payload(data: Any, format: DataSourceType | str) -> list[dict[str, Any]]:
    """Parse an uploaded payload into records.

    Raises:
        ValueError: If the format is not a payload format or the data is malformed
    """
    try:
        source = DataSourceType(format)
    except ValueError:
        raise ValueError(f"Unsupported format: {format}") from None

    if source == DataSourceType.JSON:
        return parse_json_payload(data)
    if source in (DataSourceType.CSV, DataSourceType.UA_CSV):
        return parse_csv_payload(data)
    raise ValueError(f"Unsupported format: {format}")


def dimension_fields(report: ReportResponse) -> list[str]:
    """Local names of a report's dimensions."""
    return [map_field(name) for name in report.dimension_headers]


def storage_key(
    record: dict[str, Any],
    fallback: str = UNKNOWN_DATE_KEY,
    dimensions: list[str] | None = None,
) -> str:
    """Key a record is stored and merged under.

    Dated records are keyed by their date. Undated records are keyed by
    ``fallback`` plus their dimension values, so rows for different pages,
    sources or devices stay apart. Without explicit ``dimensions`` every
    string field counts as one.
    """
    value = record.get("date")
    if value:
        return str(value)

    if dimensions is None:
        dimensions = sorted(
            k for k, v in record.items() if isinstance(v, str) and not k.startswith("_")
        )
    values = "|".join(str(record.get(name) or "") for name in dimensions if name != "date")
    if not values.strip("|"):
        return fallback

    key = f"{fallback}:{values}"
    if len(key) > MAX_STORAGE_KEY_LENGTH:
        key = f"{fallback}:{hashlib.sha1(values.encode()).hexdigest()}"
    return key


def detect_date_range(records: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Detect the first and last date present in records."""
    dates = sorted(str(r["date"]) for r in records if r.get("date"))
    if not dates:
        return None
    return {"start": dates[0], "end": dates[-1], "days": len(dates)}


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def merge_historical_data(
    existing: dict[str, Any] | None,
    new_data: dict[str, Any],
) -> dict[str, Any]:
    """Merge a record into what is already stored for the same key.

    Numeric fields present on both sides are summed; everything else is
    overwritten. Keys starting with ``_`` are metadata and never merged.
    """
    merged = dict(existing or {})
    for key, value in new_data.items():
        if key.startswith("_"):
            continue
        if _is_number(value) and _is_number(merged.get(key)):
            merged[key] = merged[key] + value
        else:
            merged[key] = value
    return merged
