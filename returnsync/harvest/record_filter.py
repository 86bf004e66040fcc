"""Validation and reduction of raw list-API records."""

from __future__ import annotations

from typing import Any, Iterable

from returnsync.common.constants import ID_FIELD, KEY_FIELD
from returnsync.common.models import ReturnRecord


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (int, float)):
        return value == 0
    return False


def to_return_record(raw: Any) -> ReturnRecord | None:
    if not isinstance(raw, dict):
        return None
    return_id = raw.get(ID_FIELD)
    return_sn = raw.get(KEY_FIELD)
    if _is_blank(return_id) or _is_blank(return_sn):
        return None
    key = return_sn.strip() if isinstance(return_sn, str) else str(return_sn)
    return ReturnRecord(id=return_id, key=key)


def filter_valid_records(raw_records: Iterable[Any]) -> tuple[list[ReturnRecord], int]:
    """Keep records with a usable id and key, reduced to those two fields.

    Returns the kept records in input order and the number dropped.
    """
    kept: list[ReturnRecord] = []
    seen = 0
    for raw in raw_records:
        seen += 1
        record = to_return_record(raw)
        if record is not None:
            kept.append(record)
    return kept, seen - len(kept)
