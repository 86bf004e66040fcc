"""Warehouse classification from free-text return addresses."""

from __future__ import annotations

from typing import Mapping

from returnsync.common.constants import WAREHOUSE_OTHER, WAREHOUSE_UNKNOWN

# Postal code substring -> warehouse label, checked in order.
WAREHOUSE_RULES: dict[str, str] = {
    "50121": "BI SMR",
    "61254": "BI SBY",
    "14460": "BI JKT",
}


def classify_warehouse(address: str | None, rules: Mapping[str, str] | None = None) -> str:
    if not address:
        return WAREHOUSE_UNKNOWN
    for code, label in (rules if rules is not None else WAREHOUSE_RULES).items():
        if code in address:
            return label
    return WAREHOUSE_OTHER
