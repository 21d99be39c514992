"""Report request/response shapes and the fixed report builders.

Builders are pure: they map a property, a date range and a row limit to a
request definition and never touch the network.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ReportType(str, Enum):
    """Fixed report shapes available for import."""

    OVERVIEW = "overview"
    PAGES = "pages"
    REFERRERS = "referrers"
    GEO = "geo"
    DEVICES = "devices"


@dataclass
class DateRange:
    """Inclusive report date range (YYYY-MM-DD or relative, e.g. 7daysAgo)."""

    start_date: str
    end_date: str

    def to_payload(self) -> dict[str, str]:
        return {"startDate": self.start_date, "endDate": self.end_date}


@dataclass
class OrderBy:
    """Sort order on a metric or dimension."""

    metric_name: str | None = None
    dimension_name: str | None = None
    desc: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"desc": self.desc}
        if self.metric_name:
            payload["metric"] = {"metricName": self.metric_name}
        if self.dimension_name:
            payload["dimension"] = {"dimensionName": self.dimension_name}
        return payload


@dataclass
class ReportRequest:
    """A dimension/metric report request."""

    property: str
    date_ranges: list[DateRange]
    dimensions: list[str]
    metrics: list[str]
    limit: int | None = None
    offset: int | None = None
    order_bys: list[OrderBy] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the API's JSON body."""
        payload: dict[str, Any] = {
            "dateRanges": [r.to_payload() for r in self.date_ranges],
            "dimensions": [{"name": d} for d in self.dimensions],
            "metrics": [{"name": m} for m in self.metrics],
        }
        if self.limit is not None:
            payload["limit"] = self.limit
        if self.offset is not None:
            payload["offset"] = self.offset
        if self.order_bys:
            payload["orderBys"] = [o.to_payload() for o in self.order_bys]
        return payload


@dataclass
class MetricHeader:
    name: str
    type: str = "TYPE_INTEGER"


@dataclass
class ReportRow:
    """One report row; values are returned as strings by the API."""

    dimension_values: list[str]
    metric_values: list[str]


@dataclass
class ReportResponse:
    """One page (or an accumulated set of pages) of report rows."""

    dimension_headers: list[str] = field(default_factory=list)
    metric_headers: list[MetricHeader] = field(default_factory=list)
    rows: list[ReportRow] = field(default_factory=list)
    row_count: int = 0
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None) -> "ReportResponse":
        """Parse the API's JSON body. Missing sections become empty."""
        data = data or {}
        rows = [
            ReportRow(
                dimension_values=[v.get("value", "") for v in row.get("dimensionValues", [])],
                metric_values=[v.get("value", "") for v in row.get("metricValues", [])],
            )
            for row in data.get("rows") or []
        ]
        return cls(
            dimension_headers=[h["name"] for h in data.get("dimensionHeaders") or []],
            metric_headers=[
                MetricHeader(name=h["name"], type=h.get("type", "TYPE_INTEGER"))
                for h in data.get("metricHeaders") or []
            ],
            rows=rows,
            row_count=int(data.get("rowCount") or 0),
            metadata=data.get("metadata"),
        )


@dataclass
class Property:
    """A reporting property the user can import from."""

    name: str  # properties/123456789
    display_name: str
    property_type: str | None = None
    time_zone: str | None = None
    currency_code: str | None = None
    create_time: str | None = None
    update_time: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Property":
        return cls(
            name=data.get("name", ""),
            display_name=data.get("displayName", ""),
            property_type=data.get("propertyType"),
            time_zone=data.get("timeZone"),
            currency_code=data.get("currencyCode"),
            create_time=data.get("createTime"),
            update_time=data.get("updateTime"),
        )


def build_overview_report(
    property_id: str,
    start_date: str,
    end_date: str,
    limit: int | None = None,
) -> ReportRequest:
    """Daily traffic totals, one row per date."""
    return ReportRequest(
        property=property_id,
        date_ranges=[DateRange(start_date, end_date)],
        dimensions=["date"],
        metrics=[
            "screenPageViews",
            "sessions",
            "totalUsers",
            "newUsers",
            "bounceRate",
            "averageSessionDuration",
            "screenPageViewsPerSession",
        ],
        limit=limit,
    )


def build_pages_report(
    property_id: str,
    start_date: str,
    end_date: str,
    limit: int = 100,
) -> ReportRequest:
    """Top pages by views."""
    return ReportRequest(
        property=property_id,
        date_ranges=[DateRange(start_date, end_date)],
        dimensions=["pagePath", "pageTitle"],
        metrics=["screenPageViews", "sessions", "averageSessionDuration", "bounceRate"],
        limit=limit,
        order_bys=[OrderBy(metric_name="screenPageViews", desc=True)],
    )


def build_referrers_report(
    property_id: str,
    start_date: str,
    end_date: str,
    limit: int = 50,
) -> ReportRequest:
    """Traffic sources by sessions."""
    return ReportRequest(
        property=property_id,
        date_ranges=[DateRange(start_date, end_date)],
        dimensions=["sessionSource", "sessionMedium"],
        metrics=["sessions", "totalUsers", "bounceRate", "conversions"],
        limit=limit,
        order_bys=[OrderBy(metric_name="sessions", desc=True)],
    )


def build_geo_report(
    property_id: str,
    start_date: str,
    end_date: str,
    limit: int = 100,
) -> ReportRequest:
    """Sessions by country and city."""
    return ReportRequest(
        property=property_id,
        date_ranges=[DateRange(start_date, end_date)],
        dimensions=["country", "city"],
        metrics=["sessions", "totalUsers", "screenPageViews"],
        limit=limit,
        order_bys=[OrderBy(metric_name="sessions", desc=True)],
    )


def build_devices_report(
    property_id: str,
    start_date: str,
    end_date: str,
    limit: int = 50,
) -> ReportRequest:
    """Sessions by device category, browser and OS."""
    return ReportRequest(
        property=property_id,
        date_ranges=[DateRange(start_date, end_date)],
        dimensions=["deviceCategory", "browser", "operatingSystem"],
        metrics=["sessions", "totalUsers", "bounceRate"],
        limit=limit,
        order_bys=[OrderBy(metric_name="sessions", desc=True)],
    )


REPORT_BUILDERS = {
    ReportType.OVERVIEW: build_overview_report,
    ReportType.PAGES: build_pages_report,
    ReportType.REFERRERS: build_referrers_report,
    ReportType.GEO: build_geo_report,
    ReportType.DEVICES: build_devices_report,
}


def build_report(
    report_type: ReportType | str,
    property_id: str,
    start_date: str,
    end_date: str,
) -> ReportRequest:
    """Build a report request by type name with its default limit."""
    return REPORT_BUILDERS[ReportType(report_type)](property_id, start_date, end_date)
