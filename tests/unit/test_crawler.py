from __future__ import annotations

import copy

import pytest

from returnsync.common.credentials import CredentialProvider
from returnsync.common.errors import AuthError
from returnsync.common.http import HttpRequestError
from returnsync.common.models import DateRange
from returnsync.harvest.crawler import PaginatedCrawler, extract_page_records


def _records(start: int, count: int) -> list[dict]:
    return [{"return_id": 1000 + i, "return_sn": f"RSN{i:05d}"} for i in range(start, start + count)]


def _page(records: list[dict], *, has_more: bool | None = None, offset=None) -> dict:
    payload: dict = {"error": 0, "data": {"exceptional_case_list": records}}
    if has_more is not None:
        payload["pagination_info"] = {"has_more": has_more}
        if offset is not None:
            payload["pagination_info"]["cursor"] = {"cursor_offset": offset}
    return payload


class FakeListClient:
    def __init__(self, pages: list):
        self.pages = list(pages)
        self.bodies: list[dict] = []
        self.headers: list[dict] = []

    def post_json(self, url: str, *, body, headers=None, timeout=None):
        self.bodies.append(copy.deepcopy(body))
        self.headers.append(dict(headers or {}))
        if not self.pages:
            return _page([])
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    def close(self):
        return None


def _crawler(client: FakeListClient, **kwargs) -> PaginatedCrawler:
    sleeps: list[float] = []
    crawler = PaginatedCrawler(
        CredentialProvider(lambda: {"Cookie": "SPC_EC=x"}),
        list_url="https://example.test/list",
        http_client=client,
        sleep=sleeps.append,
        **kwargs,
    )
    crawler.sleeps = sleeps
    return crawler


def test_build_page_request_places_date_range_verbatim():
    date_range = DateRange(lower=1700000000, upper=1700086399)
    crawler = _crawler(FakeListClient([]))

    first = crawler.build_page_request(date_range, 1, 0)
    later = crawler.build_page_request(date_range, 3, 150)

    assert first["create_time_range"] == {"lower_value": 1700000000, "upper_value": 1700086399}
    assert first["page_number"] == 1
    assert first["page_size"] == 50
    assert first["language"] == "id"
    assert "cursor" not in first
    assert later["cursor"] == {"cursor_type": 1, "cursor_offset": 150}
    assert date_range == DateRange(lower=1700000000, upper=1700086399)


def test_crawl_follows_cursor_until_has_more_false():
    client = FakeListClient(
        [
            _page(_records(0, 50), has_more=True, offset=50),
            _page(_records(50, 50), has_more=True, offset=100),
            _page(_records(100, 20), has_more=False),
        ]
    )
    crawler = _crawler(client)

    index = crawler.crawl(DateRange(lower=1, upper=2))

    assert len(client.bodies) == 3
    assert "cursor" not in client.bodies[0]
    assert client.bodies[1]["cursor"]["cursor_offset"] == 50
    assert client.bodies[2]["cursor"]["cursor_offset"] == 100
    assert [b["page_number"] for b in client.bodies] == [1, 2, 3]
    assert client.headers[0]["Cookie"] == "SPC_EC=x"
    assert index.raw_count == 120
    assert len(index.key_to_id) == 120
    assert index.pages_fetched == 3
    assert index.stop_reason == "has_more_false"
    assert crawler.sleeps == [1.0, 1.0]


def test_crawl_stops_on_empty_page():
    client = FakeListClient([_page(_records(0, 5), has_more=True, offset=5), _page([], has_more=True, offset=10)])

    index = _crawler(client).crawl(DateRange(lower=1, upper=2))

    assert len(client.bodies) == 2
    assert index.raw_count == 5
    assert index.stop_reason == "empty_page"


def test_crawl_defaults_offset_when_cursor_missing():
    client = FakeListClient([_page(_records(0, 3), has_more=True), _page(_records(3, 3), has_more=False)])

    _crawler(client, page_size=3).crawl(DateRange(lower=1, upper=2))

    assert client.bodies[1]["cursor"]["cursor_offset"] == 3


def test_crawl_without_pagination_info_runs_until_empty_page():
    client = FakeListClient([{"data": _records(0, 4)}, {"data": _records(4, 4)}])

    index = _crawler(client).crawl(DateRange(lower=1, upper=2))

    assert len(client.bodies) == 3
    assert all("cursor" not in body for body in client.bodies)
    assert index.raw_count == 8
    assert index.stop_reason == "empty_page"


def test_crawl_stops_at_page_ceiling_on_endless_server():
    class EndlessClient(FakeListClient):
        def post_json(self, url, *, body, headers=None, timeout=None):
            self.bodies.append(body)
            page = body["page_number"]
            return _page(_records(page * 10, 10), has_more=True, offset=page * 10)

    client = EndlessClient([])
    index = _crawler(client, max_pages=7).crawl(DateRange(lower=1, upper=2))

    assert len(client.bodies) == 7
    assert index.stop_reason == "page_limit"
    assert index.truncated


def test_crawl_returns_partial_results_on_page_failure():
    client = FakeListClient([_page(_records(0, 50), has_more=True, offset=50), HttpRequestError("boom")])
    crawler = _crawler(client)

    index = crawler.crawl(DateRange(lower=1, upper=2))

    assert index.raw_count == 50
    assert index.stop_reason == "error"
    assert index.error_code == "HTTP_ERROR"
    assert crawler.index is index


def test_crawl_treats_error_envelope_as_page_failure():
    client = FakeListClient([{"error": 12, "error_msg": "session expired"}])

    index = _crawler(client).crawl(DateRange(lower=1, upper=2))

    assert index.raw_count == 0
    assert index.error_code == "PROTOCOL_ERROR"


def test_crawl_filters_and_indexes_last_duplicate():
    records = _records(0, 3) + [
        {"return_id": 0, "return_sn": "RSN99999"},
        {"return_id": 7777, "return_sn": "RSN00001"},
    ]
    client = FakeListClient([_page(records, has_more=False)])
    crawler = _crawler(client)

    index = crawler.crawl(DateRange(lower=1, upper=2))

    assert index.filtered_count == 1
    assert len(index.records) == 4
    assert index.key_to_id["RSN00001"] == 7777
    assert len(index.key_to_id) == 3
    assert crawler.cache_info()["mapping_count"] == 3


def test_failed_auth_leaves_previous_index_in_place():
    client = FakeListClient([_page(_records(0, 2), has_more=False)])
    crawler = _crawler(client)
    first = crawler.crawl(DateRange(lower=1, upper=2))

    crawler.credentials = CredentialProvider(lambda: None, allow_default_headers=False)
    with pytest.raises(AuthError):
        crawler.crawl(DateRange(lower=1, upper=2))

    assert crawler.index is first


def test_clear_resets_index():
    crawler = _crawler(FakeListClient([_page(_records(0, 2), has_more=False)]))
    crawler.crawl(DateRange(lower=1, upper=2))

    crawler.clear()

    assert crawler.index.is_empty()
    assert crawler.records() == ()
    assert crawler.cache_info() == {
        "raw_count": 0,
        "valid_count": 0,
        "filtered_count": 0,
        "mapping_count": 0,
        "last_updated": None,
    }


def test_extract_page_records_recognises_both_shapes():
    assert extract_page_records({"data": {"exceptional_case_list": [1]}}) == [1]
    assert extract_page_records({"data": [2]}) == [2]
    assert extract_page_records({"data": {"other": []}}) is None
    assert extract_page_records({}) is None
