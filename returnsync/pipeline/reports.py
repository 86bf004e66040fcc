"""Run report aggregation."""

from __future__ import annotations

from pathlib import Path

from returnsync.common.fs import write_json
from returnsync.common.models import CrawlIndex, EnrichmentSummary, MatchOutcome


def run_status(
    index: CrawlIndex | None,
    outcome: MatchOutcome | None,
    summary: EnrichmentSummary | None,
) -> str:
    if index is not None and index.truncated:
        return "partial"
    if outcome is not None and outcome.unmatched:
        return "partial"
    if summary is not None and (summary.failed or summary.skipped):
        return "partial"
    return "success"


def write_run_summary(
    data_dir: Path,
    *,
    run_id: str,
    stage: str,
    index: CrawlIndex | None = None,
    outcome: MatchOutcome | None = None,
    summary: EnrichmentSummary | None = None,
    error: str | None = None,
) -> Path:
    payload: dict = {
        "run_id": run_id,
        "stage": stage,
        "status": "error" if error else run_status(index, outcome, summary),
        "error": error,
        "crawl": None,
        "match": None,
        "enrich": None,
    }
    if index is not None:
        payload["crawl"] = {
            "raw_count": index.raw_count,
            "valid_count": len(index.records),
            "filtered_count": index.filtered_count,
            "mapping_count": len(index.key_to_id),
            "pages_fetched": index.pages_fetched,
            "stop_reason": index.stop_reason,
            "error_code": index.error_code,
            "last_updated": index.last_updated,
        }
    if outcome is not None:
        payload["match"] = {
            "input_count": outcome.total,
            "matched_count": len(outcome.matched),
            "unmatched_count": len(outcome.unmatched),
            "match_rate_percent": outcome.match_rate_percent,
            "unmatched": list(outcome.unmatched),
        }
    if summary is not None:
        payload["enrich"] = {
            "total": summary.total,
            "completed": summary.completed,
            "succeeded": summary.succeeded,
            "failed": summary.failed,
            "skipped": summary.skipped,
        }

    summary_path = data_dir / "out" / "reports" / f"{run_id}_summary.json"
    write_json(summary_path, payload)
    return summary_path
