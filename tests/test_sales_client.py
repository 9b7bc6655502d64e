"""
Unit tests for sales data retrieval.

HTTP calls are mocked; no test talks to a live backend.
"""
import json
import pytest
import requests
from datetime import date
from unittest.mock import Mock

from config.settings import DataSourceConfig
from src.core.error_taxonomy import DataSourceError, ErrorCategory
from src.tools.sales_client import (
    SALES_EXTRACT_PATH,
    SalesDataClient,
    SalesDataRetriever,
    _split_payload,
    date_chunks,
)


def make_config(**overrides) -> DataSourceConfig:
    values = dict(
        api_base_url="https://tally.example.com/",
        api_token="test_token",
        timeout_seconds=5,
        company_guid="guid-1",
        company_name="Demo Traders",
        location_id=7,
        use_mock_data=False,
        chunk_days=5,
        sales_export_path="",
    )
    values.update(overrides)
    return DataSourceConfig(**values)


VOUCHER = {
    "mstid": "10",
    "date": "2025-04-03",
    "vchno": "INV-10",
    "party": "ABC Traders",
    "ledgers": [{
        "ledgerid": "S",
        "ledger": "Sales Account",
        "inventry": [{"item": "Rice", "group": "Grains", "qty": 2, "amt": 200, "profit": 20}],
    }],
}


class TestDateChunks:
    """Tests for splitting a range into request windows."""

    def test_windows_cover_range(self):
        chunks = date_chunks(date(2025, 4, 1), date(2025, 4, 12), 5)
        assert chunks == [
            (date(2025, 4, 1), date(2025, 4, 5)),
            (date(2025, 4, 6), date(2025, 4, 10)),
            (date(2025, 4, 11), date(2025, 4, 12)),
        ]

    def test_single_day(self):
        assert date_chunks(date(2025, 4, 1), date(2025, 4, 1), 5) == [(date(2025, 4, 1), date(2025, 4, 1))]

    def test_empty_when_reversed(self):
        assert date_chunks(date(2025, 4, 2), date(2025, 4, 1), 5) == []

    def test_non_positive_chunk_rejected(self):
        with pytest.raises(ValueError):
            date_chunks(date(2025, 4, 1), date(2025, 4, 2), 0)


class TestSplitPayload:
    """Tests for the response shapes the backend may return."""

    def test_vouchers(self):
        assert _split_payload({"vouchers": [VOUCHER]}) == ([VOUCHER], None)

    def test_entries(self):
        assert _split_payload({"entries": [{"id": "1"}]}) == ([], [{"id": "1"}])

    def test_nested_data(self):
        assert _split_payload({"data": {"vouchers": [VOUCHER]}}) == ([VOUCHER], None)
        assert _split_payload({"data": [{"id": "1"}]}) == ([], [{"id": "1"}])

    def test_bare_list(self):
        assert _split_payload([{"id": "1"}]) == ([], [{"id": "1"}])

    def test_unknown_shape(self):
        with pytest.raises(DataSourceError) as exc_info:
            _split_payload({"status": "ok"})
        assert exc_info.value.category == ErrorCategory.DATA_FORMAT_ERROR


class TestSalesDataClient:
    """Tests for the HTTP client."""

    @pytest.fixture
    def session(self):
        session = Mock()
        response = Mock()
        response.raise_for_status.return_value = None
        response.json.return_value = {"vouchers": [VOUCHER]}
        session.post.return_value = response
        return session

    @pytest.fixture
    def client(self, session):
        client = SalesDataClient(make_config())
        client._session = session
        return client

    def test_one_request_per_chunk(self, client, session):
        result = client.fetch_extract(date(2025, 4, 1), date(2025, 4, 12))

        assert session.post.call_count == 3
        assert result.source == "api"
        assert len(result.vouchers) == 3

    def test_request_body(self, client, session):
        client.fetch_extract(date(2025, 4, 1), date(2025, 4, 3))

        args, kwargs = session.post.call_args
        assert args[0] == "https://tally.example.com" + SALES_EXTRACT_PATH
        assert kwargs["json"] == {
            "tallyloc_id": 7,
            "company": "Demo Traders",
            "guid": "guid-1",
            "fromdate": "20250401",
            "todate": "20250403",
        }
        assert kwargs["timeout"] == 5

    def test_line_items(self, client):
        items = client.fetch_line_items(date(2025, 4, 1), date(2025, 4, 3))
        assert len(items) == 1
        assert items[0].item_name == "Rice"
        assert items[0].customer == "ABC Traders"

    def test_timeout(self, client, session):
        session.post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(DataSourceError) as exc_info:
            client.fetch_extract(date(2025, 4, 1), date(2025, 4, 3))
        assert exc_info.value.category == ErrorCategory.DATA_RETRIEVAL_TIMEOUT
        assert exc_info.value.classify().recoverable

    def test_connection_error(self, client, session):
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(DataSourceError) as exc_info:
            client.fetch_extract(date(2025, 4, 1), date(2025, 4, 3))
        assert exc_info.value.category == ErrorCategory.DATA_SOURCE_UNAVAILABLE

    def test_http_error(self, client, session):
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500 Server Error")
        with pytest.raises(DataSourceError):
            client.fetch_extract(date(2025, 4, 1), date(2025, 4, 3))

    def test_invalid_json(self, client, session):
        session.post.return_value.json.side_effect = ValueError("Expecting value")
        with pytest.raises(DataSourceError) as exc_info:
            client.fetch_extract(date(2025, 4, 1), date(2025, 4, 3))
        assert exc_info.value.category == ErrorCategory.DATA_FORMAT_ERROR

    def test_missing_base_url(self):
        client = SalesDataClient(make_config(api_base_url=""))
        with pytest.raises(DataSourceError) as exc_info:
            client.fetch_extract(date(2025, 4, 1), date(2025, 4, 3))
        assert exc_info.value.category == ErrorCategory.CONFIGURATION_ERROR

    def test_session_sends_bearer_token(self):
        session = SalesDataClient(make_config())._get_session()
        assert session.headers["Authorization"] == "Bearer test_token"


class TestSalesDataRetriever:
    """Tests for source selection."""

    def test_mock_source(self):
        retriever = SalesDataRetriever(make_config(use_mock_data=True))
        items = retriever.get_line_items(date(2025, 4, 1), date(2025, 4, 30))

        assert retriever.source_name == "mock"
        assert items
        assert all(date(2025, 4, 1) <= item.canonical_date <= date(2025, 4, 30) for item in items)

    def test_export_file_source(self, tmp_path):
        path = tmp_path / "sales.json"
        path.write_text(json.dumps({"vouchers": [VOUCHER, dict(VOUCHER, mstid="11", date="2025-05-01")]}))
        retriever = SalesDataRetriever(make_config(sales_export_path=str(path)))

        assert retriever.source_name == "file"
        assert retriever.get_extract(date(2025, 4, 1), date(2025, 4, 30)).row_count == 2
        items = retriever.get_line_items(date(2025, 4, 1), date(2025, 4, 30))
        assert [i.master_id for i in items] == ["10"]

    def test_export_file_with_flat_entries(self, tmp_path):
        path = tmp_path / "entries.json"
        path.write_text(json.dumps({"entries": [
            {"id": "1", "date": "02-Apr-25", "customer": "ABC Traders", "itemName": "Rice", "amount": "100"},
        ]}))
        retriever = SalesDataRetriever(make_config(sales_export_path=str(path)))
        items = retriever.get_line_items(date(2025, 4, 1), date(2025, 4, 30))
        assert [i.amount for i in items] == [100.0]

    def test_missing_export_file(self, tmp_path):
        retriever = SalesDataRetriever(make_config(sales_export_path=str(tmp_path / "missing.json")))
        with pytest.raises(DataSourceError):
            retriever.get_extract(date(2025, 4, 1), date(2025, 4, 30))

    def test_reversed_range_rejected(self):
        retriever = SalesDataRetriever(make_config(use_mock_data=True))
        with pytest.raises(ValueError):
            retriever.get_extract(date(2025, 4, 30), date(2025, 4, 1))
