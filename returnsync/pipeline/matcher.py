"""Reconciliation of user-supplied return keys against a crawl index."""

from __future__ import annotations

import logging
import re
from typing import Any

from returnsync.common.errors import EmptyInputError, NoDataError, ValidationError
from returnsync.common.logging import log_event
from returnsync.common.models import CrawlIndex, MatchedPair, MatchOutcome

KEY_RE = re.compile(r"^[A-Z0-9]{3,20}$")
UNMATCHED_SAMPLE_SIZE = 5


def validate_key(key: str) -> bool:
    return bool(KEY_RE.match(key))


def split_keys(text: str) -> tuple[list[str], list[str]]:
    """Split pasted input into valid and invalid keys, one key per line."""
    valid: list[str] = []
    invalid: list[str] = []
    for line in text.splitlines():
        candidate = line.strip()
        if not candidate:
            continue
        if validate_key(candidate):
            valid.append(candidate)
        else:
            invalid.append(candidate)
    return valid, invalid


def match_rate(matched_count: int, total_count: int) -> float:
    if total_count == 0:
        return 0.0
    return round(matched_count / total_count * 100, 1)


class ReconciliationMatcher:
    """Joins parsed keys against a CrawlIndex and keeps the latest outcome."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._user_input: list[str] = []
        self._invalid_input: list[str] = []
        self._outcome: MatchOutcome | None = None
        self._key_to_id: dict[str, Any] = {}

    def parse_keys(self, text: str | None) -> list[str]:
        if not isinstance(text, str) or not text.strip():
            raise EmptyInputError("No return keys supplied")

        valid, invalid = split_keys(text)
        if invalid:
            log_event(
                self.logger,
                f"ignored {len(invalid)} malformed keys: {', '.join(invalid[:UNMATCHED_SAMPLE_SIZE])}",
                level=logging.WARNING,
                stage="match",
                event="KEYS_PARSED",
                status="partial",
                rows_in=len(valid) + len(invalid),
                rows_out=len(valid),
            )
        if not valid:
            raise EmptyInputError(f"No valid return keys found ({len(invalid)} malformed lines)")

        log_event(
            self.logger,
            f"parsed {len(valid)} valid keys",
            stage="match",
            event="KEYS_PARSED",
            status="ok",
            rows_in=len(valid) + len(invalid),
            rows_out=len(valid),
        )
        self._user_input = list(valid)
        self._invalid_input = list(invalid)
        return valid

    def match(self, keys: list[str], index: CrawlIndex) -> MatchOutcome:
        if not keys:
            raise ValidationError("No return keys to match")
        if index.is_empty():
            raise NoDataError("No crawled records available, run a crawl first")

        matched: list[MatchedPair] = []
        unmatched: list[str] = []
        lookup = index.key_to_id
        for key in keys:
            if key in lookup:
                matched.append(MatchedPair(key=key, id=lookup[key]))
            else:
                unmatched.append(key)

        outcome = MatchOutcome(
            matched=tuple(matched),
            unmatched=tuple(unmatched),
            match_rate_percent=match_rate(len(matched), len(keys)),
        )
        self._outcome = outcome
        self._key_to_id = {pair.key: pair.id for pair in matched}

        log_event(
            self.logger,
            f"matched {len(matched)} of {len(keys)} keys ({outcome.match_rate_percent}%)",
            stage="match",
            event="MATCH_DONE",
            status="partial" if unmatched else "ok",
            rows_in=len(keys),
            rows_out=len(matched),
        )
        if unmatched:
            sample = ", ".join(unmatched[:UNMATCHED_SAMPLE_SIZE])
            if len(unmatched) > UNMATCHED_SAMPLE_SIZE:
                sample += "..."
            log_event(
                self.logger,
                f"unmatched keys: {sample}",
                level=logging.WARNING,
                stage="match",
                event="MATCH_DONE",
                status="partial",
            )
        return outcome

    @property
    def outcome(self) -> MatchOutcome | None:
        return self._outcome

    def matched_pairs(self) -> list[MatchedPair]:
        return list(self._outcome.matched) if self._outcome else []

    def matched_ids(self) -> list[Any]:
        return [pair.id for pair in self.matched_pairs()]

    def unmatched_keys(self) -> list[str]:
        return list(self._outcome.unmatched) if self._outcome else []

    def get_id(self, key: str) -> Any | None:
        return self._key_to_id.get(key)

    def cache_info(self) -> dict[str, Any]:
        matched = len(self._outcome.matched) if self._outcome else 0
        unmatched = len(self._outcome.unmatched) if self._outcome else 0
        return {
            "input_count": len(self._user_input),
            "invalid_count": len(self._invalid_input),
            "matched_count": matched,
            "unmatched_count": unmatched,
            "match_rate_percent": self._outcome.match_rate_percent if self._outcome else 0.0,
        }

    def clear(self) -> None:
        self._user_input = []
        self._invalid_input = []
        self._outcome = None
        self._key_to_id = {}
        log_event(self.logger, "match cache cleared", stage="match", event="CACHE_CLEARED")
