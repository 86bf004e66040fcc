"""CLI entrypoint for the seller return reconciliation pipeline."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from returnsync.common.config_loader import AppConfig, load_config
from returnsync.common.constants import EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS, STAGES
from returnsync.common.credentials import CredentialProvider
from returnsync.common.errors import PipelineError, ValidationError
from returnsync.common.fs import read_text
from returnsync.common.http import HttpClient, RetryConfig, TimeoutConfig
from returnsync.common.ids import generate_run_id
from returnsync.common.logging import build_logger, log_event
from returnsync.common.models import DateRange
from returnsync.common.time_utils import date_range_from_dates, default_date_range
from returnsync.harvest.crawler import PaginatedCrawler
from returnsync.pipeline.detail_context import HttpDetailOpener
from returnsync.pipeline.enricher import ConcurrentEnricher, ContextOpener
from returnsync.pipeline.export import write_results_csv
from returnsync.pipeline.matcher import ReconciliationMatcher
from returnsync.pipeline.reports import run_status, write_run_summary


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from exc
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {number}")
    return number


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=STAGES)
    parser.add_argument("--start", default=None, help="first day of the crawl window (YYYY-MM-DD)")
    parser.add_argument("--end", default=None, help="last day of the crawl window (YYYY-MM-DD)")
    parser.add_argument("--keys-file", default=None, help="text file with one return SN per line")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--max-concurrency", type=_positive_int, default=None)
    parser.add_argument("--timeout", type=_positive_float, default=None, help="per-return enrichment timeout in seconds")
    parser.add_argument("--strict", action="store_true")
    return parser.parse_args(argv)


def resolve_date_range(args: argparse.Namespace, config: AppConfig) -> DateRange:
    if args.start and args.end:
        return date_range_from_dates(args.start, args.end, config.dates["timezone"])
    if args.start or args.end:
        raise ValidationError("--start and --end must be given together")
    return default_date_range(int(config.dates["default_days"]))


def read_keys_text(args: argparse.Namespace) -> str:
    if not args.keys_file:
        raise ValidationError(f"--keys-file is required for the {args.command} command")
    path = Path(args.keys_file)
    if not path.exists():
        raise ValidationError(f"Keys file not found: {path}")
    return read_text(path)


def build_credentials(config: AppConfig, logger: logging.Logger) -> CredentialProvider:
    auth = config.auth
    return CredentialProvider.from_environment(
        capture_timeout=float(auth["capture_timeout_seconds"]),
        default_headers=auth["default_headers"],
        allow_default_headers=bool(auth["allow_default_headers"]),
        logger=logger,
    )


def notify(message: str) -> None:
    print(message, file=sys.stderr)


def _exit_code(status: str, strict: bool) -> int:
    if status == "success":
        return EXIT_SUCCESS
    return EXIT_HARD_FAIL if strict else EXIT_PARTIAL


def run_command(
    args: argparse.Namespace,
    *,
    http_client: HttpClient | None = None,
    opener: ContextOpener | None = None,
    credentials: CredentialProvider | None = None,
) -> int:
    run_id = args.run_id or generate_run_id()
    data_dir = Path(args.data_dir)
    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    stage = "setup"

    index = outcome = summary = None
    owns_client = http_client is None
    client = http_client
    try:
        config = load_config(
            Path(args.config_dir),
            overlay_config_dir=Path(args.overlay_config_dir) if args.overlay_config_dir else None,
        )
        date_range = resolve_date_range(args, config)
        keys_text = read_keys_text(args) if args.command != "crawl" else None
        credentials = credentials or build_credentials(config, logger)
        if client is None:
            client = HttpClient(
                retry=RetryConfig(max_attempts=int(config.crawler["max_attempts"])),
                timeout=TimeoutConfig(
                    connect=float(config.crawler["connect_timeout"]),
                    read=float(config.crawler["read_timeout"]),
                ),
            )

        stage = "crawl"
        crawler = PaginatedCrawler.from_config(config, credentials, http_client=client, logger=logger)
        index = crawler.crawl(date_range)
        print(
            f"crawl: {len(index.records)} valid records ({index.filtered_count} filtered) "
            f"from {index.pages_fetched} pages, {len(index.key_to_id)} keys indexed"
        )
        if index.error_code is not None:
            notify(f"crawl stopped early after a page failure ({index.error_code}); results are partial")

        if args.command != "crawl":
            stage = "match"
            matcher = ReconciliationMatcher(logger=logger)
            keys = matcher.parse_keys(keys_text)
            outcome = matcher.match(keys, crawler.index)
            print(
                f"match: {len(outcome.matched)} of {outcome.total} keys matched "
                f"({outcome.match_rate_percent}%)"
            )

        if args.command == "enrich":
            stage = "enrich"
            enricher_kwargs = {"logger": logger}
            if args.max_concurrency is not None:
                enricher_kwargs["max_concurrency"] = args.max_concurrency
            if args.timeout is not None:
                enricher_kwargs["timeout_seconds"] = args.timeout
            detail_opener = opener or HttpDetailOpener(
                client,
                credentials,
                address_fields=config.enricher["address_fields"],
                logger=logger,
            )
            enricher = ConcurrentEnricher.from_config(config, detail_opener, **enricher_kwargs)
            results = enricher.enrich_all(outcome.matched)
            summary = enricher.last_summary
            csv_path = write_results_csv(data_dir / "out" / f"{run_id}_results.csv", results)
            print(f"enrich: {summary.describe()}; results written to {csv_path}")
    except PipelineError as exc:
        log_event(
            logger,
            f"{stage} failed: {exc}",
            level=logging.ERROR,
            run_id=run_id,
            stage=stage,
            event="RUN_FAIL",
            status="error",
            error_code=exc.error_code,
        )
        notify(f"error: {exc}")
        write_run_summary(data_dir, run_id=run_id, stage=stage, index=index, outcome=outcome, error=str(exc))
        return EXIT_HARD_FAIL
    finally:
        if owns_client and client is not None:
            client.close()

    write_run_summary(data_dir, run_id=run_id, stage=args.command, index=index, outcome=outcome, summary=summary)
    status = run_status(index, outcome, summary)
    log_event(logger, "run complete", run_id=run_id, stage=args.command, event="RUN_END", status=status)
    return _exit_code(status, args.strict)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except PipelineError:
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
