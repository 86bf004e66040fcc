from __future__ import annotations

import pytest

from returnsync.common.credentials import CredentialProvider
from returnsync.common.models import DateRange
from returnsync.harvest.crawler import PaginatedCrawler
from returnsync.pipeline.enricher import ConcurrentEnricher
from returnsync.pipeline.matcher import ReconciliationMatcher
from tests.integration.fakes import AddressOpener, PagedListClient, make_pages


def _crawler(client: PagedListClient) -> PaginatedCrawler:
    return PaginatedCrawler(
        CredentialProvider(lambda: {"Cookie": "SPC_EC=x"}),
        list_url="https://example.test/list",
        http_client=client,
        sleep=lambda _seconds: None,
    )


@pytest.mark.integration
def test_crawl_filter_match_across_three_pages():
    client = PagedListClient(make_pages(valid=115, invalid=5, sizes=[50, 50, 20]))
    crawler = _crawler(client)

    index = crawler.crawl(DateRange(lower=1709226000, upper=1711904399))

    assert len(client.bodies) == 3
    assert index.raw_count == 120
    assert index.filtered_count == 5
    assert len(index.records) == 115
    assert len(index.key_to_id) == 115
    assert index.stop_reason == "has_more_false"

    keys_text = "\n".join([f"RSN{i:06d}" for i in (0, 10, 20, 30, 40, 50, 114)] + ["RSNX00001", "RSNX00002", "RSNX00003"])
    matcher = ReconciliationMatcher()
    keys = matcher.parse_keys(keys_text)
    outcome = matcher.match(keys, crawler.index)

    assert len(keys) == 10
    assert len(outcome.matched) == 7
    assert outcome.match_rate_percent == 70.0
    assert list(outcome.unmatched) == ["RSNX00001", "RSNX00002", "RSNX00003"]
    assert outcome.matched[0].id == 500000


@pytest.mark.integration
def test_full_pipeline_enriches_matched_returns():
    client = PagedListClient(make_pages(valid=115, invalid=5, sizes=[50, 50, 20]))
    crawler = _crawler(client)
    crawler.crawl(DateRange(lower=1, upper=2))
    matcher = ReconciliationMatcher()
    outcome = matcher.match(matcher.parse_keys("RSN000000\nRSN000001\nRSN000002\nRSN000003\nRSN000004"), crawler.index)
    silent = outcome.matched[4].id
    enricher = ConcurrentEnricher(
        AddressOpener(silent_ids={silent}),
        detail_url_template="https://example.test/detail/{return_id}",
        max_concurrency=3,
        timeout_seconds=0.3,
    )
    progress = []

    results = enricher.enrich_all(outcome.matched, on_progress=progress.append)

    by_key = {r.key: r for r in results}
    assert len(results) == 5
    assert len(progress) == 5
    assert by_key["RSN000000"].warehouse == "BI SMR"
    assert by_key["RSN000001"].warehouse == "BI SBY"
    assert by_key["RSN000002"].warehouse == "BI JKT"
    assert by_key["RSN000003"].warehouse == "other"
    assert by_key["RSN000004"].address == "timeout"
    assert enricher.last_summary.describe() == "4 of 5 succeeded, 1 failed"
