"""
Configuration settings for the Sales Reporting Engine.

All tunables come from environment variables with sensible defaults,
so the same code runs against the offline cache, a live backend, or mock data.
"""
import os
from dataclasses import dataclass, field
from typing import Optional, Dict
from enum import Enum


class PaginationMode(Enum):
    ROW_OFFSET = "row_offset"
    VOUCHER_KEYED = "voucher_keyed"


# Scale factors offered by the report configuration screen
SCALE_FACTORS: Dict[str, int] = {
    "1": 1,
    "Tens": 10,
    "Hundreds": 100,
    "Thousands": 1_000,
    "Lakhs": 100_000,
    "Crores": 10_000_000,
}


@dataclass
class ReportConfig:
    """Defaults for report views and the voucher drilldown."""
    page_size: int = field(
        default_factory=lambda: int(os.getenv("REPORT_PAGE_SIZE", "50"))
    )
    default_periodicity: str = field(
        default_factory=lambda: os.getenv("REPORT_PERIODICITY", "monthly")
    )
    default_scale_factor: int = field(
        default_factory=lambda: int(os.getenv("REPORT_SCALE_FACTOR", "1"))
    )
    # Window used for average daily sales / days-of-stock
    avg_window_days: int = field(
        default_factory=lambda: int(os.getenv("REPORT_AVG_SALES_DAYS", "30"))
    )
    top_n: int = field(
        default_factory=lambda: int(os.getenv("REPORT_TOP_N", "10"))
    )
    # Ledger sum must exceed this before it replaces a zero voucher amount
    voucher_amount_epsilon: float = field(
        default_factory=lambda: float(os.getenv("REPORT_VOUCHER_EPSILON", "0.5"))
    )
    pagination_mode: PaginationMode = field(
        default_factory=lambda: PaginationMode(
            os.getenv("REPORT_PAGINATION_MODE", PaginationMode.ROW_OFFSET.value)
        )
    )


@dataclass
class DataSourceConfig:
    """Remote API and offline cache configuration."""
    api_base_url: str = field(default_factory=lambda: os.getenv("SALES_API_BASE_URL", ""))
    api_token: str = field(default_factory=lambda: os.getenv("SALES_API_TOKEN", ""))
    timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("SALES_API_TIMEOUT", "90"))
    )
    sqlite_path: str = field(default_factory=lambda: os.getenv("VOUCHER_DB_PATH", "vouchers.db"))
    company_guid: str = field(default_factory=lambda: os.getenv("COMPANY_GUID", ""))
    company_name: str = field(default_factory=lambda: os.getenv("COMPANY_NAME", ""))
    location_id: Optional[int] = field(
        default_factory=lambda: int(os.environ["TALLY_LOCATION_ID"]) if os.getenv("TALLY_LOCATION_ID") else None
    )
    use_mock_data: bool = field(
        default_factory=lambda: os.getenv("USE_MOCK_DATA", "false").lower() == "true"
    )
    # Remote extracts are requested in windows of this many days
    chunk_days: int = field(default_factory=lambda: int(os.getenv("SALES_API_CHUNK_DAYS", "5")))
    sales_export_path: str = field(default_factory=lambda: os.getenv("SALES_EXPORT_PATH", ""))

    @property
    def has_remote(self) -> bool:
        return bool(self.api_base_url)


@dataclass
class AppConfig:
    """Main application configuration."""
    report: ReportConfig = field(default_factory=ReportConfig)
    data_source: DataSourceConfig = field(default_factory=DataSourceConfig)

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def validate(self) -> Dict[str, str]:
        """Return a map of setting name to problem; empty when valid."""
        problems = {}
        if self.report.page_size <= 0:
            problems["REPORT_PAGE_SIZE"] = "must be positive"
        if self.report.default_periodicity not in ("daily", "weekly", "monthly", "quarterly", "yearly"):
            problems["REPORT_PERIODICITY"] = f"unknown periodicity {self.report.default_periodicity!r}"
        if self.report.default_scale_factor not in SCALE_FACTORS.values():
            problems["REPORT_SCALE_FACTOR"] = f"unsupported scale {self.report.default_scale_factor}"
        if self.report.avg_window_days <= 0:
            problems["REPORT_AVG_SALES_DAYS"] = "must be positive"
        if self.data_source.chunk_days <= 0:
            problems["SALES_API_CHUNK_DAYS"] = "must be positive"
        if not (self.data_source.use_mock_data or self.data_source.has_remote or self.data_source.sales_export_path):
            problems["SALES_API_BASE_URL"] = "not set (set USE_MOCK_DATA=true for offline demo)"
        return problems


def get_config() -> AppConfig:
    """Factory function to get application configuration."""
    return AppConfig()
