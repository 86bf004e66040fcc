"""Cursor-paginated crawl of the return list API."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from returnsync.common.config_loader import AppConfig
from returnsync.common.constants import CURSOR_TYPE, RECORD_LIST_FIELD
from returnsync.common.credentials import CredentialProvider
from returnsync.common.errors import NetworkError, ProtocolError
from returnsync.common.http import HttpClient, RetryConfig, TimeoutConfig
from returnsync.common.logging import log_event
from returnsync.common.models import CrawlIndex, DateRange, ReturnRecord
from returnsync.common.time_utils import utc_timestamp_iso
from returnsync.harvest.record_filter import filter_valid_records

STOP_EMPTY_PAGE = "empty_page"
STOP_HAS_MORE_FALSE = "has_more_false"
STOP_PAGE_LIMIT = "page_limit"
STOP_ERROR = "error"


def extract_page_records(payload: dict) -> list | None:
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get(RECORD_LIST_FIELD), list):
        return data[RECORD_LIST_FIELD]
    if isinstance(data, list):
        return data
    return None


def _cursor_offset(pagination: dict) -> Any:
    cursor = pagination.get("cursor")
    if isinstance(cursor, dict):
        return cursor.get("cursor_offset") or None
    return None


class PaginatedCrawler:
    """Drives the list API page by page and owns the resulting CrawlIndex.

    Only one page request is outstanding at a time. The stored index is
    replaced in a single assignment once a crawl has finished, so readers
    see either the previous or the new index.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        *,
        list_url: str,
        http_client: HttpClient | None = None,
        language: str = "id",
        page_size: int = 50,
        page_delay_seconds: float = 1.0,
        max_pages: int = 200,
        retry: RetryConfig | None = None,
        timeout: TimeoutConfig | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.credentials = credentials
        self.list_url = list_url
        self.http_client = http_client
        self.language = language
        self.page_size = page_size
        self.page_delay_seconds = page_delay_seconds
        self.max_pages = max_pages
        self.retry = retry
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.sleep = sleep or time.sleep
        self._lock = threading.Lock()
        self._index = CrawlIndex()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        credentials: CredentialProvider,
        **kwargs: Any,
    ) -> "PaginatedCrawler":
        crawler_cfg = config.crawler
        kwargs.setdefault("retry", RetryConfig(max_attempts=int(crawler_cfg["max_attempts"])))
        kwargs.setdefault(
            "timeout",
            TimeoutConfig(connect=float(crawler_cfg["connect_timeout"]), read=float(crawler_cfg["read_timeout"])),
        )
        return cls(
            credentials,
            list_url=config.api["list_url"],
            language=config.api["language"],
            page_size=int(crawler_cfg["page_size"]),
            page_delay_seconds=float(crawler_cfg["page_delay_seconds"]),
            max_pages=int(crawler_cfg["max_pages"]),
            **kwargs,
        )

    def build_page_request(self, date_range: DateRange, page_number: int, cursor_offset: Any = 0) -> dict:
        payload = {
            "language": self.language,
            "is_reverse_sorting_order": False,
            "page_number": page_number,
            "page_size": self.page_size,
            "keyword": None,
            "pending_action": None,
            "request_solution": None,
            "forward_logistics_statuses": [],
            "reverse_logistics_statuses": [],
            "return_reasons": [],
            "create_time_range": date_range.to_payload(),
            "compensation_amount_option": None,
            "seller_request_statuses": [],
            "validation_type_option": None,
            "request_adjusted": None,
            "advanced_fulfilment_option": None,
            "refund_amount_range": {"lower_value": None, "upper_value": None},
            "flow_tab": 1,
            "case_tab": 0,
            "sorting_field": 1,
            "key_action_due_time_range": {"lower_value": None, "upper_value": None},
            "platform_type": "sc",
        }
        if cursor_offset:
            payload["cursor"] = {"cursor_type": CURSOR_TYPE, "cursor_offset": cursor_offset}
        return payload

    def fetch_page(
        self,
        client: HttpClient,
        headers: dict[str, str],
        date_range: DateRange,
        page_number: int,
        cursor_offset: Any,
    ) -> dict:
        payload = client.post_json(
            self.list_url,
            body=self.build_page_request(date_range, page_number, cursor_offset),
            headers=headers,
            timeout=self.timeout,
        )
        if not isinstance(payload, dict):
            raise ProtocolError(f"Unexpected list response type: {type(payload).__name__}")
        error = payload.get("error")
        if error not in (None, 0):
            raise ProtocolError(f"List API error {error}: {payload.get('error_msg') or 'unknown error'}")
        return payload

    def _crawl_pages(self, client: HttpClient, headers: dict[str, str], date_range: DateRange) -> tuple[list, dict]:
        raw_records: list = []
        page = 1
        cursor_offset: Any = 0
        has_more = True
        meta: dict[str, Any] = {"pages_fetched": 0, "stop_reason": None, "error_code": None}

        while has_more:
            if page > self.max_pages:
                meta["stop_reason"] = STOP_PAGE_LIMIT
                log_event(
                    self.logger,
                    f"page limit {self.max_pages} reached, stopping crawl",
                    level=logging.WARNING,
                    stage="crawl",
                    event="CRAWL_STOP",
                    status="partial",
                    page=page,
                )
                break

            try:
                payload = self.fetch_page(client, headers, date_range, page, cursor_offset)
            except (NetworkError, ProtocolError) as exc:
                meta["stop_reason"] = STOP_ERROR
                meta["error_code"] = exc.error_code
                log_event(
                    self.logger,
                    f"page {page} failed: {exc}",
                    level=logging.ERROR,
                    stage="crawl",
                    event="PAGE_FAILED",
                    status="error",
                    page=page,
                    error_code=exc.error_code,
                )
                break

            page_records = extract_page_records(payload)
            pagination = payload.get("pagination_info")
            explicit_stop = False
            if isinstance(pagination, dict):
                explicit_stop = pagination.get("has_more") is False
                has_more = bool(pagination.get("has_more", False))
                cursor_offset = _cursor_offset(pagination) or page * self.page_size

            if not page_records:
                meta["stop_reason"] = STOP_EMPTY_PAGE
                log_event(self.logger, f"page {page} is empty, stopping crawl", stage="crawl", event="CRAWL_STOP", page=page)
                break

            raw_records.extend(page_records)
            meta["pages_fetched"] += 1
            log_event(
                self.logger,
                f"page {page} returned {len(page_records)} records",
                stage="crawl",
                event="PAGE_FETCHED",
                status="ok",
                page=page,
                rows_out=len(page_records),
            )

            if explicit_stop:
                break
            page += 1
            if has_more:
                self.sleep(self.page_delay_seconds)

        if meta["stop_reason"] is None:
            meta["stop_reason"] = STOP_HAS_MORE_FALSE
        return raw_records, meta

    def crawl(self, date_range: DateRange) -> CrawlIndex:
        headers = self.credentials.resolve()
        started = time.monotonic()
        log_event(self.logger, "crawl start", stage="crawl", event="CRAWL_START", status="ok")

        owns_client = self.http_client is None
        client = self.http_client or HttpClient(retry=self.retry, timeout=self.timeout)
        try:
            raw_records, meta = self._crawl_pages(client, headers, date_range)
        finally:
            if owns_client:
                client.close()

        records, filtered_count = filter_valid_records(raw_records)
        if filtered_count:
            log_event(
                self.logger,
                f"filtered out {filtered_count} invalid records",
                level=logging.WARNING,
                stage="crawl",
                event="RECORDS_FILTERED",
                rows_in=len(raw_records),
                rows_out=len(records),
            )

        index = CrawlIndex.build(
            records,
            last_updated=utc_timestamp_iso(),
            raw_count=len(raw_records),
            filtered_count=filtered_count,
            **meta,
        )
        with self._lock:
            self._index = index

        log_event(
            self.logger,
            f"crawl complete: {len(raw_records)} raw, {len(records)} valid, {len(index.key_to_id)} keys indexed",
            stage="crawl",
            event="INDEX_BUILT",
            status="partial" if index.truncated else "ok",
            rows_in=len(raw_records),
            rows_out=len(index.key_to_id),
            error_code=index.error_code,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return index

    @property
    def index(self) -> CrawlIndex:
        with self._lock:
            return self._index

    def records(self) -> tuple[ReturnRecord, ...]:
        return self.index.records

    def key_to_id(self) -> dict[str, Any]:
        return dict(self.index.key_to_id)

    def cache_info(self) -> dict[str, Any]:
        index = self.index
        return {
            "raw_count": index.raw_count,
            "valid_count": len(index.records),
            "filtered_count": index.filtered_count,
            "mapping_count": len(index.key_to_id),
            "last_updated": index.last_updated,
        }

    def clear(self) -> None:
        with self._lock:
            self._index = CrawlIndex()
        log_event(self.logger, "crawl cache cleared", stage="crawl", event="CACHE_CLEARED")
