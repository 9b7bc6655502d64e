"""
Sales Data Retrieval

Fetches sales data for a date range from one of three sources:
1. Mock data (USE_MOCK_DATA=true)
2. A JSON export file (SALES_EXPORT_PATH)
3. The accounting backend's sales extract endpoint over HTTP

The backend is asked for the range in windows of SALES_API_CHUNK_DAYS
days. Every source yields the same extract voucher shape, which is
flattened into LineItems (dashboards) or VoucherRows (drilldown).
"""
import json
import logging
from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Tuple
from pathlib import Path
import requests

from config.settings import DataSourceConfig, get_config
from src.core.error_taxonomy import DataSourceError, ErrorCategory, ErrorCollector
from src.core.observability import SpanKind, get_tracer
from src.core.periods import filter_by_date_range
from src.core.records import LineItem, load_line_items, line_items_from_extract

logger = logging.getLogger(__name__)

SALES_EXTRACT_PATH = "/api/reports/salesextract"


@dataclass
class SalesExtractResult:
    """Container for extract vouchers with metadata."""
    vouchers: List[Dict[str, Any]]
    start_date: date
    end_date: date
    retrieved_at: datetime
    source: str
    execution_time_ms: float
    # Flat line items, when the source already returns them flattened
    entries: Optional[List[Dict[str, Any]]] = None

    @property
    def row_count(self) -> int:
        return len(self.vouchers) + len(self.entries or [])

    def to_line_items(self, errors: Optional[ErrorCollector] = None) -> List[LineItem]:
        items = line_items_from_extract(self.vouchers, errors)
        if self.entries is not None:
            items.extend(load_line_items(self.entries, errors))
        return items

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vouchers": self.vouchers,
            "entries": self.entries,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "retrieved_at": self.retrieved_at.isoformat(),
            "source": self.source,
            "row_count": self.row_count,
            "execution_time_ms": self.execution_time_ms,
        }


def date_chunks(start_date: date, end_date: date, chunk_days: int) -> List[Tuple[date, date]]:
    """Split an inclusive date range into consecutive windows of chunk_days."""
    if chunk_days <= 0:
        raise ValueError(f"chunk_days must be positive, got {chunk_days}")
    chunks = []
    current = start_date
    while current <= end_date:
        chunk_end = min(current + timedelta(days=chunk_days - 1), end_date)
        chunks.append((current, chunk_end))
        current = chunk_end + timedelta(days=1)
    return chunks


def _split_payload(payload: Any) -> Tuple[List[Dict[str, Any]], Optional[List[Dict[str, Any]]]]:
    """
    Pull vouchers or flat entries out of a response body.

    Accepts {"vouchers": [...]}, {"entries": [...]}, {"data": [...]},
    {"data": {"entries": [...]}} and a bare list of entries.
    """
    if isinstance(payload, list):
        return [], payload
    if not isinstance(payload, dict):
        raise DataSourceError(f"Unexpected sales payload type {type(payload).__name__}",
                              category=ErrorCategory.DATA_FORMAT_ERROR)
    if isinstance(payload.get("vouchers"), list):
        return payload["vouchers"], None
    if isinstance(payload.get("entries"), list):
        return [], payload["entries"]
    data = payload.get("data")
    if isinstance(data, list):
        return [], data
    if isinstance(data, dict):
        return _split_payload(data)
    raise DataSourceError("Sales payload has no vouchers or entries",
                          category=ErrorCategory.DATA_FORMAT_ERROR,
                          context={"keys": sorted(payload.keys())})


class SalesDataClient:
    """
    HTTP client for the sales extract endpoint.

    Authenticates with a bearer token. Requests are not retried.
    """

    def __init__(self, config: DataSourceConfig):
        self.config = config
        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        """Get or create authenticated session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                "Authorization": f"Bearer {self.config.api_token}",
                "Content-Type": "application/json",
            })
        return self._session

    def _post_chunk(self, start_date: date, end_date: date) -> Any:
        url = f"{self.config.api_base_url.rstrip('/')}{SALES_EXTRACT_PATH}"
        body = {
            "tallyloc_id": self.config.location_id,
            "company": self.config.company_name,
            "guid": self.config.company_guid,
            "fromdate": start_date.strftime("%Y%m%d"),
            "todate": end_date.strftime("%Y%m%d"),
        }
        try:
            response = self._get_session().post(url, json=body, timeout=self.config.timeout_seconds)
            response.raise_for_status()
        except requests.Timeout as e:
            logger.error(f"Sales extract timed out for {start_date}..{end_date}: {e}")
            raise DataSourceError(f"Sales extract timed out: {e}",
                                  category=ErrorCategory.DATA_RETRIEVAL_TIMEOUT,
                                  context={"from": body["fromdate"], "to": body["todate"]}) from e
        except requests.RequestException as e:
            logger.error(f"Sales extract failed for {start_date}..{end_date}: {e}")
            raise DataSourceError(f"Sales extract failed: {e}",
                                  context={"from": body["fromdate"], "to": body["todate"]}) from e

        try:
            return response.json()
        except ValueError as e:
            raise DataSourceError(f"Sales extract returned invalid JSON: {e}",
                                  category=ErrorCategory.DATA_FORMAT_ERROR) from e

    def fetch_extract(self, start_date: date, end_date: date) -> SalesExtractResult:
        """Fetch every chunk of the range and concatenate the results."""
        if not self.config.has_remote:
            raise DataSourceError("SALES_API_BASE_URL is not configured",
                                  category=ErrorCategory.CONFIGURATION_ERROR)

        started = datetime.utcnow()
        vouchers: List[Dict[str, Any]] = []
        entries: Optional[List[Dict[str, Any]]] = None
        chunks = date_chunks(start_date, end_date, self.config.chunk_days)

        for index, (chunk_start, chunk_end) in enumerate(chunks, start=1):
            logger.info(f"Fetching sales chunk {index}/{len(chunks)}: {chunk_start} to {chunk_end}")
            chunk_vouchers, chunk_entries = _split_payload(self._post_chunk(chunk_start, chunk_end))
            vouchers.extend(chunk_vouchers)
            if chunk_entries is not None:
                entries = (entries or []) + chunk_entries

        return SalesExtractResult(
            vouchers=vouchers,
            entries=entries,
            start_date=start_date,
            end_date=end_date,
            retrieved_at=datetime.utcnow(),
            source="api",
            execution_time_ms=(datetime.utcnow() - started).total_seconds() * 1000,
        )

    def fetch_line_items(
        self,
        start_date: date,
        end_date: date,
        errors: Optional[ErrorCollector] = None,
    ) -> List[LineItem]:
        return self.fetch_extract(start_date, end_date).to_line_items(errors)


class SalesDataRetriever:
    """
    High-level interface for sales data.

    Picks mock data, the export file or the live client from config.
    """

    def __init__(self, config: Optional[DataSourceConfig] = None):
        self.config = config or get_config().data_source
        self.client = SalesDataClient(self.config)
        self.tracer = get_tracer()

    @property
    def source_name(self) -> str:
        if self.config.use_mock_data:
            return "mock"
        if self.config.sales_export_path:
            return "file"
        return "api"

    def _load_export(self, start_date: date, end_date: date) -> SalesExtractResult:
        path = Path(self.config.sales_export_path)
        started = datetime.utcnow()
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except OSError as e:
            raise DataSourceError(f"Cannot read sales export {path}: {e}",
                                  context={"path": str(path)}) from e
        except json.JSONDecodeError as e:
            raise DataSourceError(f"Sales export {path} is not valid JSON: {e}",
                                  category=ErrorCategory.DATA_FORMAT_ERROR,
                                  context={"path": str(path)}) from e

        vouchers, entries = _split_payload(payload)
        return SalesExtractResult(
            vouchers=vouchers,
            entries=entries,
            start_date=start_date,
            end_date=end_date,
            retrieved_at=datetime.utcnow(),
            source="file",
            execution_time_ms=(datetime.utcnow() - started).total_seconds() * 1000,
        )

    def get_extract(self, start_date: date, end_date: date) -> SalesExtractResult:
        """
        Retrieve extract vouchers for a date range.

        Args:
            start_date: First day of the range
            end_date: Last day of the range (inclusive)

        Returns:
            SalesExtractResult from the configured source
        """
        if start_date > end_date:
            raise ValueError(f"start_date {start_date} is after end_date {end_date}")

        with self.tracer.span("sales_extract", SpanKind.DATA_RETRIEVAL, {"source": self.source_name}) as span:
            if self.config.use_mock_data:
                from src.tools.mock_data_generator import generate_mock_sales_extract
                result = SalesExtractResult(
                    vouchers=generate_mock_sales_extract(start_date, end_date),
                    start_date=start_date,
                    end_date=end_date,
                    retrieved_at=datetime.utcnow(),
                    source="mock",
                    execution_time_ms=0.0,
                )
            elif self.config.sales_export_path:
                result = self._load_export(start_date, end_date)
            else:
                result = self.client.fetch_extract(start_date, end_date)
            span.attributes["rows"] = result.row_count

        if result.row_count == 0:
            logger.warning(f"No sales data for {start_date} to {end_date} ({result.source})")
        return result

    def get_line_items(
        self,
        start_date: date,
        end_date: date,
        errors: Optional[ErrorCollector] = None,
    ) -> List[LineItem]:
        """Line items for a date range; records outside it are dropped."""
        items = self.get_extract(start_date, end_date).to_line_items(errors)
        return filter_by_date_range(items, start_date, end_date, lambda item: item.date, errors)


def get_sales_retriever() -> SalesDataRetriever:
    """Factory function to get a configured sales retriever."""
    return SalesDataRetriever()
