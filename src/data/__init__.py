"""
Data layer module for sales records, period normalization and voucher paging.
"""
from src.core.records import (
    LineItem,
    VoucherRow,
    load_line_items,
    line_items_from_extract,
    voucher_rows_from_extract,
    tables_from_extract,
)
from src.core.periods import (
    Periodicity,
    PeriodBucket,
    parse_date,
    period_key_of,
)
from src.data.pagination import (
    PAGE_SIZE,
    VoucherPage,
    VoucherStore,
    InMemoryVoucherStore,
    SqliteVoucherStore,
    PaginatedVoucherLoader,
    GroupedPage,
)

__all__ = [
    # Records
    "LineItem",
    "VoucherRow",
    "load_line_items",
    "line_items_from_extract",
    "voucher_rows_from_extract",
    "tables_from_extract",
    # Periods
    "Periodicity",
    "PeriodBucket",
    "parse_date",
    "period_key_of",
    # Voucher paging
    "PAGE_SIZE",
    "VoucherPage",
    "VoucherStore",
    "InMemoryVoucherStore",
    "SqliteVoucherStore",
    "PaginatedVoucherLoader",
    "GroupedPage",
]
