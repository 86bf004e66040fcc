"""Data models shared by the crawler, matcher and enricher."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from returnsync.common.errors import ValidationError


@dataclass(frozen=True)
class DateRange:
    lower: int
    upper: int

    def __post_init__(self) -> None:
        if self.lower > self.upper:
            raise ValidationError(f"Date range lower bound {self.lower} is after upper bound {self.upper}")

    def to_payload(self) -> dict[str, int]:
        return {"lower_value": self.lower, "upper_value": self.upper}


@dataclass(frozen=True)
class ReturnRecord:
    id: Any
    key: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CrawlIndex:
    """Filtered records of one crawl plus the key to id lookup built from them."""

    records: tuple[ReturnRecord, ...] = ()
    key_to_id: Mapping[str, Any] = field(default_factory=dict)
    last_updated: str | None = None
    raw_count: int = 0
    filtered_count: int = 0
    pages_fetched: int = 0
    stop_reason: str | None = None
    error_code: str | None = None

    @classmethod
    def build(cls, records: Iterable[ReturnRecord], **meta: Any) -> "CrawlIndex":
        ordered = tuple(records)
        key_to_id: dict[str, Any] = {}
        # Duplicate keys keep the id of their last occurrence.
        for record in ordered:
            key_to_id[record.key] = record.id
        return cls(records=ordered, key_to_id=MappingProxyType(key_to_id), **meta)

    def is_empty(self) -> bool:
        return not self.key_to_id

    @property
    def truncated(self) -> bool:
        return self.error_code is not None or self.stop_reason == "page_limit"


@dataclass(frozen=True)
class MatchedPair:
    key: str
    id: Any

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MatchOutcome:
    matched: tuple[MatchedPair, ...]
    unmatched: tuple[str, ...]
    match_rate_percent: float

    @property
    def total(self) -> int:
        return len(self.matched) + len(self.unmatched)


@dataclass(frozen=True)
class EnrichmentResult:
    key: str
    id: Any
    success: bool
    address: str
    warehouse: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EnrichmentProgress:
    total_count: int
    completed_count: int
    current_result: EnrichmentResult


@dataclass(frozen=True)
class EnrichmentSummary:
    total: int
    completed: int
    succeeded: int
    failed: int
    skipped: int

    def describe(self) -> str:
        text = f"{self.succeeded} of {self.total} succeeded, {self.failed} failed"
        if self.skipped:
            text += f", {self.skipped} skipped"
        return text
