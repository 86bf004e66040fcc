from __future__ import annotations

import pytest

from returnsync.common.errors import EmptyInputError, NoDataError, ValidationError
from returnsync.common.models import CrawlIndex, ReturnRecord
from returnsync.pipeline.matcher import ReconciliationMatcher, match_rate, split_keys, validate_key


def _index(*pairs: tuple[str, int]) -> CrawlIndex:
    return CrawlIndex.build(ReturnRecord(id=return_id, key=key) for key, return_id in pairs)


def test_validate_key_format_rules():
    assert validate_key("ABC123")
    assert not validate_key("ab")
    assert not validate_key("A" * 21)
    assert validate_key("ABC")
    assert validate_key("A" * 20)
    assert not validate_key("AB")
    assert not validate_key("abc123")
    assert not validate_key("ABC-123")


def test_split_keys_trims_and_drops_blank_lines():
    valid, invalid = split_keys("  RSN001 \r\n\n rsn002\nRSN003\n   \nX\n")

    assert valid == ["RSN001", "RSN003"]
    assert invalid == ["rsn002", "X"]


def test_parse_keys_returns_valid_subset():
    matcher = ReconciliationMatcher()

    assert matcher.parse_keys("RSN001\nbad key\nRSN002") == ["RSN001", "RSN002"]
    assert matcher.cache_info()["invalid_count"] == 1


@pytest.mark.parametrize("text", ["", "   \n  ", None, "ab\ncd"])
def test_parse_keys_raises_when_nothing_valid(text):
    with pytest.raises(EmptyInputError):
        ReconciliationMatcher().parse_keys(text)


def test_empty_input_error_is_a_validation_error():
    assert issubclass(EmptyInputError, ValidationError)


def test_match_partitions_in_input_order():
    index = _index(("RSN003", 3), ("RSN001", 1), ("RSN002", 2))
    matcher = ReconciliationMatcher()

    outcome = matcher.match(["RSN002", "MISS01", "RSN001", "MISS02"], index)

    assert [(p.key, p.id) for p in outcome.matched] == [("RSN002", 2), ("RSN001", 1)]
    assert outcome.unmatched == ("MISS01", "MISS02")
    assert outcome.match_rate_percent == 50.0


def test_match_rate_rounds_to_one_decimal():
    index = _index(("RSN001", 1))
    outcome = ReconciliationMatcher().match(["RSN001", "MISS01", "MISS02"], index)

    assert outcome.match_rate_percent == round(1 / 3 * 100, 1) == 33.3
    assert match_rate(2, 3) == 66.7
    assert match_rate(0, 0) == 0.0


def test_match_against_empty_index_raises_no_data():
    with pytest.raises(NoDataError):
        ReconciliationMatcher().match(["RSN001"], CrawlIndex())


def test_match_without_keys_raises_validation_error():
    with pytest.raises(ValidationError):
        ReconciliationMatcher().match([], _index(("RSN001", 1)))


def test_zero_matches_on_non_empty_index_is_not_an_error():
    outcome = ReconciliationMatcher().match(["MISS01"], _index(("RSN001", 1)))

    assert outcome.matched == ()
    assert outcome.match_rate_percent == 0.0


def test_match_does_not_mutate_index():
    index = _index(("RSN001", 1))
    ReconciliationMatcher().match(["RSN001", "MISS01"], index)

    assert dict(index.key_to_id) == {"RSN001": 1}


def test_matcher_accessors_and_clear():
    matcher = ReconciliationMatcher()
    keys = matcher.parse_keys("RSN001\nRSN002")
    matcher.match(keys, _index(("RSN001", 11)))

    assert matcher.matched_ids() == [11]
    assert matcher.unmatched_keys() == ["RSN002"]
    assert matcher.get_id("RSN001") == 11
    assert matcher.get_id("RSN002") is None
    assert matcher.cache_info() == {
        "input_count": 2,
        "invalid_count": 0,
        "matched_count": 1,
        "unmatched_count": 1,
        "match_rate_percent": 50.0,
    }

    matcher.clear()

    assert matcher.outcome is None
    assert matcher.matched_pairs() == []
    assert matcher.cache_info()["input_count"] == 0
