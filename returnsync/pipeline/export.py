"""CSV export of enrichment results."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from returnsync.common.fs import write_csv
from returnsync.common.models import EnrichmentResult

RESULT_COLUMNS = ["key", "id", "success", "address", "warehouse", "timestamp"]


def write_results_csv(path: Path, results: Iterable[EnrichmentResult]) -> Path:
    # utf-8-sig so spreadsheet tools detect the encoding.
    write_csv(path, RESULT_COLUMNS, (result.to_dict() for result in results), encoding="utf-8-sig")
    return path
