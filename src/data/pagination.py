"""
Voucher Pagination

Fetches fixed-size pages of voucher rows from a store and groups each
page into voucher cards.

Two paging strategies are available (config: REPORT_PAGINATION_MODE):
- ROW_OFFSET: offset = page_index * page_size rows of the flattened
  voucher/ledger/item join. A voucher whose rows straddle a page
  boundary comes back as two partial cards, one on each page.
- VOUCHER_KEYED: the store pages over distinct voucher ids and returns
  every row of the selected vouchers, so a voucher is never split.

A new query or page request supersedes any request still in flight.
RequestGuard hands out a generation number per request; a response
whose generation is no longer current is dropped instead of shown.
"""
import logging
import math
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set, Union

import pandas as pd

from config.settings import PaginationMode, get_config
from src.core.error_taxonomy import DataSourceError, ErrorCategory, ErrorCollector, record_error
from src.core.observability import SpanKind, Tracer, get_tracer
from src.core.periods import parse_date
from src.core.records import VoucherRow
from src.tools.voucher_grouper import VoucherCard, group_vouchers

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

# Voucher columns a caller may filter on
FILTERABLE_COLUMNS = ("vchtype", "reservedname", "party")


@dataclass
class VoucherPage:
    """Rows of one page plus the size of the whole result set."""
    rows: List[VoucherRow]
    total: int

    def total_pages(self, page_size: int = PAGE_SIZE) -> int:
        return max(1, math.ceil(self.total / page_size))


class VoucherStore(Protocol):
    """A paginated source of voucher rows."""

    def get_page(
        self,
        start_date: date,
        end_date: date,
        filter_keys: Mapping[str, str],
        guid: Optional[str],
        location_id: Optional[int],
        limit: int,
        offset: int,
    ) -> VoucherPage:
        """Rows [offset, offset + limit) of the flattened join; total counts rows."""
        ...

    def get_voucher_page(
        self,
        start_date: date,
        end_date: date,
        filter_keys: Mapping[str, str],
        guid: Optional[str],
        location_id: Optional[int],
        limit: int,
        offset: int,
    ) -> VoucherPage:
        """All rows of vouchers [offset, offset + limit); total counts vouchers."""
        ...


def _check_filter_keys(filter_keys: Mapping[str, str]) -> None:
    unknown = set(filter_keys) - set(FILTERABLE_COLUMNS)
    if unknown:
        raise ValueError(f"Unsupported voucher filter(s): {sorted(unknown)}")


class InMemoryVoucherStore:
    """
    VoucherStore over a list of rows held in memory.

    Rows are kept in (date, vchno) order like the SQLite store. A store
    built with a company guid / location id returns empty pages for
    queries against any other company.
    """

    def __init__(
        self,
        rows: Sequence[Union[VoucherRow, Dict[str, Any]]],
        company_guid: Optional[str] = None,
        location_id: Optional[int] = None,
        attributes: Optional[Mapping[str, Mapping[str, str]]] = None,
    ):
        parsed = [r if isinstance(r, VoucherRow) else VoucherRow.from_dict(r) for r in rows]
        self.rows = sorted(parsed, key=lambda r: (parse_date(r.date) or date.max, r.vchno))
        self.company_guid = company_guid
        self.location_id = location_id
        # Extra per-voucher columns (e.g. reservedname) keyed by mstid
        self.attributes = attributes or {}

    def _matching(self, start_date, end_date, filter_keys, guid, location_id) -> List[VoucherRow]:
        _check_filter_keys(filter_keys)
        if self.company_guid is not None and guid != self.company_guid:
            return []
        if self.location_id is not None and location_id != self.location_id:
            return []

        matched = []
        for row in self.rows:
            row_date = parse_date(row.date)
            if row_date is None or not (start_date <= row_date <= end_date):
                continue
            extra = self.attributes.get(row.mstid or "", {})
            if all(extra.get(k, getattr(row, k, None)) == v for k, v in filter_keys.items()):
                matched.append(row)
        return matched

    def get_page(self, start_date, end_date, filter_keys, guid, location_id, limit, offset) -> VoucherPage:
        matched = self._matching(start_date, end_date, filter_keys, guid, location_id)
        return VoucherPage(rows=matched[offset:offset + limit], total=len(matched))

    def get_voucher_page(self, start_date, end_date, filter_keys, guid, location_id, limit, offset) -> VoucherPage:
        matched = [r for r in self._matching(start_date, end_date, filter_keys, guid, location_id) if r.mstid]
        voucher_ids = list(dict.fromkeys(r.mstid for r in matched))
        selected = set(voucher_ids[offset:offset + limit])
        return VoucherPage(rows=[r for r in matched if r.mstid in selected], total=len(voucher_ids))


_SCHEMA = """
CREATE TABLE IF NOT EXISTS vouchers (
    mstid TEXT PRIMARY KEY,
    date TEXT,
    date_iso TEXT,
    vchtype TEXT,
    reservedname TEXT,
    vchno TEXT,
    party TEXT,
    amt REAL,
    company_guid TEXT,
    tallyloc_id INTEGER
);
CREATE TABLE IF NOT EXISTS ledgers (
    ledgerid TEXT,
    voucher_id TEXT,
    ledger TEXT,
    isprty TEXT,
    amt REAL,
    company_guid TEXT,
    tallyloc_id INTEGER
);
CREATE TABLE IF NOT EXISTS inventories (
    ledger_id TEXT,
    voucher_id TEXT,
    item TEXT,
    qty REAL,
    amt REAL,
    company_guid TEXT,
    tallyloc_id INTEGER
);
CREATE INDEX IF NOT EXISTS idx_vouchers_date ON vouchers(date_iso);
CREATE INDEX IF NOT EXISTS idx_ledgers_voucher ON ledgers(voucher_id);
CREATE INDEX IF NOT EXISTS idx_inventories_ledger ON inventories(ledger_id);
"""

_JOIN = """
FROM vouchers v
LEFT JOIN ledgers l ON l.voucher_id = v.mstid
LEFT JOIN inventories i ON i.ledger_id = l.ledgerid AND i.voucher_id = v.mstid
"""

_ROW_COLUMNS = """
SELECT v.mstid AS mstid,
       v.date AS date,
       v.party AS party,
       v.vchtype AS vchtype,
       v.vchno AS vchno,
       v.amt AS voucherAmt,
       l.ledgerid AS ledger_id,
       l.ledger AS ledger,
       l.isprty AS isprty,
       COALESCE(l.amt, 0) AS ledgerAmt,
       COALESCE(i.item, '') AS item,
       COALESCE(i.qty, 0) AS qty,
       COALESCE(i.amt, 0) AS amt
"""

# Voucher ids per DELETE, under the SQLite bound-parameter limit
_DELETE_BATCH = 500

_ROW_ORDER = "ORDER BY v.date_iso ASC, v.vchno ASC, v.mstid ASC, l.ledgerid ASC, i.item ASC"


def _ids(rows: List[Dict[str, Any]], key: str) -> Set[str]:
    return {str(r[key]) for r in rows if r.get(key) not in (None, "")}


class SqliteVoucherStore:
    """
    VoucherStore over the local SQLite cache (vouchers, ledgers, inventories).

    Queries run through pandas.read_sql_query; NULLs come back as None.
    Any database failure is raised as DataSourceError.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_config().data_source.sqlite_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def create_schema(self) -> None:
        with self.connection:
            self.connection.executescript(_SCHEMA)
        logger.info(f"Voucher cache schema ready at {self.db_path}")

    def seed(
        self,
        vouchers: List[Dict[str, Any]],
        ledgers: List[Dict[str, Any]],
        inventories: List[Dict[str, Any]],
    ) -> None:
        """
        Write table rows (as produced by the mock generator or a sync job).

        Rows are replaced per voucher id, not appended: a voucher in the
        input loses its old voucher, ledger and inventory rows, and ledger
        or inventory rows given on their own replace that voucher's rows
        in their table. Re-syncing an overlapping range is therefore safe.
        """
        self.create_schema()
        voucher_frame = pd.DataFrame(vouchers)
        if not voucher_frame.empty and "date_iso" not in voucher_frame.columns:
            voucher_frame["date_iso"] = [
                d.isoformat() if d else None for d in (parse_date(v) for v in voucher_frame["date"])
            ]
        voucher_ids = _ids(vouchers, "mstid")
        stale = (
            ("vouchers", "mstid", voucher_ids),
            ("ledgers", "voucher_id", voucher_ids | _ids(ledgers, "voucher_id")),
            ("inventories", "voucher_id", voucher_ids | _ids(inventories, "voucher_id")),
        )
        try:
            with self.connection:
                for table, column, ids in stale:
                    self._delete_ids(table, column, sorted(ids))
                for table, frame in (
                    ("vouchers", voucher_frame),
                    ("ledgers", pd.DataFrame(ledgers)),
                    ("inventories", pd.DataFrame(inventories)),
                ):
                    if not frame.empty:
                        frame.to_sql(table, self.connection, if_exists="append", index=False)
        except (sqlite3.Error, pd.errors.DatabaseError, ValueError) as e:
            raise DataSourceError(f"Failed to seed voucher cache: {e}",
                                  context={"db_path": self.db_path}) from e
        logger.info(f"Seeded {len(vouchers)} vouchers, {len(ledgers)} ledgers, {len(inventories)} inventory lines")

    def _delete_ids(self, table: str, column: str, ids: List[str]) -> None:
        for start in range(0, len(ids), _DELETE_BATCH):
            batch = ids[start:start + _DELETE_BATCH]
            placeholders = ",".join("?" for _ in batch)
            self.connection.execute(f"DELETE FROM {table} WHERE {column} IN ({placeholders})", batch)

    def _where(self, start_date, end_date, filter_keys, guid, location_id):
        _check_filter_keys(filter_keys)
        clauses = ["v.date_iso >= ?", "v.date_iso <= ?"]
        params: List[Any] = [start_date.isoformat(), end_date.isoformat()]
        if guid:
            clauses.append("v.company_guid = ?")
            params.append(guid)
        if location_id is not None:
            clauses.append("v.tallyloc_id = ?")
            params.append(location_id)
        for column, value in filter_keys.items():
            clauses.append(f"v.{column} = ?")
            params.append(value)
        return "WHERE " + " AND ".join(clauses), params

    def _query(self, sql: str, params: List[Any]) -> pd.DataFrame:
        try:
            return pd.read_sql_query(sql, self.connection, params=params)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise DataSourceError(f"Voucher cache query failed: {e}",
                                  context={"db_path": self.db_path}) from e

    @staticmethod
    def _to_rows(frame: pd.DataFrame) -> List[VoucherRow]:
        cleaned = frame.astype(object).where(pd.notna(frame), None)
        return [VoucherRow.from_dict(raw) for raw in cleaned.to_dict("records")]

    def get_page(self, start_date, end_date, filter_keys, guid, location_id, limit, offset) -> VoucherPage:
        where, params = self._where(start_date, end_date, filter_keys, guid, location_id)
        total = int(self._query(f"SELECT COUNT(*) AS cnt {_JOIN} {where}", params)["cnt"].iloc[0])
        if total == 0:
            return VoucherPage(rows=[], total=0)

        frame = self._query(f"{_ROW_COLUMNS} {_JOIN} {where} {_ROW_ORDER} LIMIT ? OFFSET ?",
                            params + [limit, offset])
        return VoucherPage(rows=self._to_rows(frame), total=total)

    def get_voucher_page(self, start_date, end_date, filter_keys, guid, location_id, limit, offset) -> VoucherPage:
        where, params = self._where(start_date, end_date, filter_keys, guid, location_id)
        total = int(self._query(f"SELECT COUNT(DISTINCT v.mstid) AS cnt FROM vouchers v {where}",
                                params)["cnt"].iloc[0])
        if total == 0:
            return VoucherPage(rows=[], total=0)

        targets = self._query(
            f"SELECT v.mstid AS mstid FROM vouchers v {where} "
            f"ORDER BY v.date_iso ASC, v.vchno ASC, v.mstid ASC LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        voucher_ids = targets["mstid"].tolist()
        if not voucher_ids:
            return VoucherPage(rows=[], total=total)

        placeholders = ",".join("?" for _ in voucher_ids)
        frame = self._query(
            f"{_ROW_COLUMNS} {_JOIN} {where} AND v.mstid IN ({placeholders}) {_ROW_ORDER}",
            params + voucher_ids,
        )
        return VoucherPage(rows=self._to_rows(frame), total=total)


class RequestGuard:
    """Generation counter that marks all but the latest request stale."""

    def __init__(self):
        self._generation = 0
        self._lock = threading.Lock()

    def next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    @property
    def current(self) -> int:
        with self._lock:
            return self._generation

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation


@dataclass(frozen=True)
class VoucherQuery:
    start_date: date
    end_date: date
    filter_keys: Mapping[str, str] = field(default_factory=dict)
    guid: Optional[str] = None
    location_id: Optional[int] = None


@dataclass(frozen=True)
class PageRequest:
    generation: int
    page_index: int
    query: VoucherQuery


@dataclass
class GroupedPage:
    """One page as shown by the voucher drilldown."""
    page_index: int
    total: int
    total_pages: int
    cards: List[VoucherCard]
    mode: PaginationMode

    @property
    def has_previous(self) -> bool:
        return self.page_index > 0

    @property
    def has_next(self) -> bool:
        return self.page_index + 1 < self.total_pages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_index": self.page_index,
            "total": self.total,
            "total_pages": self.total_pages,
            "mode": self.mode.value,
            "cards": [c.to_dict() for c in self.cards],
        }


class PaginatedVoucherLoader:
    """
    Loads pages from a VoucherStore and groups them into voucher cards.

    load_page() is begin_request() + fetch() + complete(). The split
    exists so a caller running fetch() elsewhere can still have a late
    response discarded by complete().
    """

    def __init__(
        self,
        store: VoucherStore,
        page_size: Optional[int] = None,
        mode: Optional[PaginationMode] = None,
        epsilon: Optional[float] = None,
        tracer: Optional[Tracer] = None,
        errors: Optional[ErrorCollector] = None,
    ):
        report_config = get_config().report
        self.store = store
        self.page_size = page_size or report_config.page_size
        self.mode = mode or report_config.pagination_mode
        self.epsilon = report_config.voucher_amount_epsilon if epsilon is None else epsilon
        self.tracer = tracer or get_tracer()
        self.errors = errors
        self.guard = RequestGuard()
        self.query: Optional[VoucherQuery] = None
        self.current_page: Optional[GroupedPage] = None

    def set_query(
        self,
        start_date: date,
        end_date: date,
        filter_keys: Optional[Mapping[str, str]] = None,
        guid: Optional[str] = None,
        location_id: Optional[int] = None,
    ) -> None:
        """New date range / filters: anything in flight becomes stale."""
        self.query = VoucherQuery(start_date, end_date, dict(filter_keys or {}), guid, location_id)
        self.guard.next_generation()
        self.current_page = None

    def begin_request(self, page_index: int) -> PageRequest:
        if self.query is None:
            raise ValueError("set_query() must be called before loading pages")
        return PageRequest(self.guard.next_generation(), max(page_index, 0), self.query)

    def fetch(self, request: PageRequest) -> VoucherPage:
        q = request.query
        offset = request.page_index * self.page_size
        fetcher = self.store.get_voucher_page if self.mode == PaginationMode.VOUCHER_KEYED else self.store.get_page

        with self.tracer.span("voucher_page", SpanKind.DATA_RETRIEVAL,
                              {"page_index": request.page_index, "mode": self.mode.value}) as span:
            page = fetcher(q.start_date, q.end_date, q.filter_keys, q.guid, q.location_id,
                           self.page_size, offset)
            span.attributes["rows"] = len(page.rows)
            span.attributes["total"] = page.total
        return page

    def complete(self, request: PageRequest, page: VoucherPage) -> Optional[GroupedPage]:
        """Group a fetched page, or drop it if a newer request was issued."""
        if not self.guard.is_current(request.generation):
            record_error(self.errors, ErrorCategory.STALE_RESPONSE,
                         f"dropped page {request.page_index} (generation {request.generation}, "
                         f"current {self.guard.current})", phase="pagination")
            return None

        with self.tracer.span("group_vouchers", SpanKind.GROUPING, {"rows": len(page.rows)}):
            cards = group_vouchers(page.rows, self.errors, self.epsilon)

        self.current_page = GroupedPage(
            page_index=request.page_index,
            total=page.total,
            total_pages=page.total_pages(self.page_size),
            cards=cards,
            mode=self.mode,
        )
        logger.info(
            f"Loaded page {request.page_index + 1}/{self.current_page.total_pages}: "
            f"{len(page.rows)} rows, {len(cards)} vouchers"
        )
        return self.current_page

    def load_page(self, page_index: int) -> Optional[GroupedPage]:
        request = self.begin_request(page_index)
        return self.complete(request, self.fetch(request))

    def next_page(self) -> Optional[GroupedPage]:
        if self.current_page is None:
            return self.load_page(0)
        target = min(self.current_page.total_pages - 1, self.current_page.page_index + 1)
        return self.load_page(target)

    def previous_page(self) -> Optional[GroupedPage]:
        if self.current_page is None:
            return self.load_page(0)
        return self.load_page(max(0, self.current_page.page_index - 1))
