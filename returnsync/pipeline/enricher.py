"""Bounded-concurrency address enrichment with correlated asynchronous replies."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol

from returnsync.common.config_loader import AppConfig
from returnsync.common.constants import (
    ADDRESS_BLOCKED,
    ADDRESS_CANCELLED,
    ADDRESS_EVENT_TYPE,
    ADDRESS_NOT_FOUND,
    ADDRESS_TIMEOUT,
    WAREHOUSE_UNKNOWN,
)
from returnsync.common.errors import BlockedError, EnrichmentTimeoutError, ValidationError
from returnsync.common.logging import log_event
from returnsync.common.models import EnrichmentProgress, EnrichmentResult, EnrichmentSummary, MatchedPair
from returnsync.common.time_utils import utc_timestamp_iso
from returnsync.pipeline.warehouse import classify_warehouse

Deliver = Callable[[Mapping[str, Any]], bool]
ProgressCallback = Callable[[EnrichmentProgress], None]


class ExternalContext(Protocol):
    def close(self) -> None: ...


class ContextOpener(Protocol):
    def open(self, request_id: str, url: str, deliver: Deliver) -> ExternalContext: ...


class CancellationToken(Protocol):
    def is_set(self) -> bool: ...


@dataclass
class PendingRequest:
    key: str
    return_id: Any
    request_id: str
    future: Future
    timer: threading.Timer
    context: ExternalContext | None = None


class PendingRegistry:
    """In-flight requests keyed by correlation id.

    Every mutation happens under one lock. ``pop`` is the only way a request
    leaves the registry, so whichever of timeout or reply pops first owns the
    resolution.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, PendingRequest] = {}

    def register(self, request: PendingRequest) -> bool:
        with self._lock:
            if request.request_id in self._pending:
                return False
            self._pending[request.request_id] = request
            return True

    def attach(self, request_id: str, context: ExternalContext) -> bool:
        with self._lock:
            request = self._pending.get(request_id)
            if request is None:
                return False
            request.context = context
            return True

    def pop(self, request_id: str) -> PendingRequest | None:
        with self._lock:
            return self._pending.pop(request_id, None)

    def drain(self) -> list[PendingRequest]:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
            return pending

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._pending)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


def summarize_results(results: Iterable[EnrichmentResult], total: int) -> EnrichmentSummary:
    completed = 0
    succeeded = 0
    for result in results:
        completed += 1
        if result.success:
            succeeded += 1
    return EnrichmentSummary(
        total=total,
        completed=completed,
        succeeded=succeeded,
        failed=completed - succeeded,
        skipped=max(total - completed, 0),
    )


def _check_limits(max_concurrency: int, timeout: float | None) -> None:
    if max_concurrency < 1:
        raise ValidationError(f"max_concurrency must be at least 1, got {max_concurrency}")
    if timeout is not None and timeout <= 0:
        raise ValidationError(f"timeout must be positive, got {timeout}")


class ConcurrentEnricher:
    def __init__(
        self,
        opener: ContextOpener,
        *,
        detail_url_template: str,
        max_concurrency: int = 3,
        timeout_seconds: float = 30.0,
        warehouse_rules: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        _check_limits(max_concurrency, timeout_seconds)
        self.opener = opener
        self.detail_url_template = detail_url_template
        self.max_concurrency = max_concurrency
        self.timeout_seconds = timeout_seconds
        self.warehouse_rules = warehouse_rules
        self.logger = logger or logging.getLogger(__name__)
        self.last_summary: EnrichmentSummary | None = None
        self._registry = PendingRegistry()
        self._results: dict[str, EnrichmentResult] = {}
        self._results_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig, opener: ContextOpener, **kwargs: Any) -> "ConcurrentEnricher":
        kwargs.setdefault("max_concurrency", int(config.enricher["max_concurrency"]))
        kwargs.setdefault("timeout_seconds", float(config.enricher["timeout_seconds"]))
        kwargs.setdefault("warehouse_rules", config.warehouses)
        return cls(opener, detail_url_template=config.api["detail_url_template"], **kwargs)

    def detail_url(self, return_id: Any) -> str:
        return self.detail_url_template.format(return_id=return_id)

    def processing_ids(self) -> set[str]:
        return self._registry.ids()

    def _result(self, key: str, return_id: Any, success: bool, address: str, warehouse: str) -> EnrichmentResult:
        return EnrichmentResult(
            key=key,
            id=return_id,
            success=success,
            address=address,
            warehouse=warehouse,
            timestamp=utc_timestamp_iso(),
        )

    def _store(self, result: EnrichmentResult) -> EnrichmentResult:
        with self._results_lock:
            self._results[result.key] = result
        return result

    def _close_context(self, context: ExternalContext | None, key: str) -> None:
        if context is None:
            return
        try:
            context.close()
        except Exception:
            log_event(
                self.logger,
                f"failed to close context for {key}",
                level=logging.WARNING,
                stage="enrich",
                event="CONTEXT_CLOSE_FAILED",
                key=key,
            )

    def _finish(self, request: PendingRequest, result: EnrichmentResult) -> None:
        request.timer.cancel()
        self._close_context(request.context, request.key)
        self._store(result)
        request.future.set_result(result)

    def _expire(self, request_id: str) -> None:
        request = self._registry.pop(request_id)
        if request is None:
            return
        log_event(
            self.logger,
            f"enrichment timed out for {request.key}",
            level=logging.ERROR,
            stage="enrich",
            event="ENRICH_TIMEOUT",
            status="error",
            key=request.key,
            error_code=EnrichmentTimeoutError.error_code,
        )
        self._finish(request, self._result(request.key, request.return_id, False, ADDRESS_TIMEOUT, WAREHOUSE_UNKNOWN))

    def deliver(self, message: Mapping[str, Any]) -> bool:
        """Resolve the pending request a reply message is addressed to.

        Returns False for foreign messages and for replies whose request was
        already resolved by a timeout or an earlier reply.
        """
        if not isinstance(message, Mapping) or message.get("type") != ADDRESS_EVENT_TYPE:
            return False
        order_id = message.get("orderId")
        if order_id is None:
            return False
        request = self._registry.pop(str(order_id))
        if request is None:
            log_event(self.logger, f"ignored reply for {order_id}", level=logging.DEBUG, stage="enrich", event="REPLY_IGNORED")
            return False

        address = message.get("address")
        success = message.get("success") is True
        if isinstance(address, str) and address.strip():
            address_text = address.strip()
            warehouse = classify_warehouse(address_text, self.warehouse_rules)
        else:
            address_text = ADDRESS_NOT_FOUND
            warehouse = WAREHOUSE_UNKNOWN
        self._finish(request, self._result(request.key, request.return_id, success, address_text, warehouse))
        return True

    def enrich_one(self, key: str, return_id: Any, *, timeout: float | None = None) -> EnrichmentResult:
        request_id = str(return_id)
        wait_for = self.timeout_seconds if timeout is None else timeout
        timer = threading.Timer(wait_for, self._expire, args=(request_id,))
        timer.daemon = True
        request = PendingRequest(key=key, return_id=return_id, request_id=request_id, future=Future(), timer=timer)

        if not self._registry.register(request):
            log_event(
                self.logger,
                f"{key} skipped, id {request_id} already in flight",
                level=logging.WARNING,
                stage="enrich",
                event="ENRICH_DUPLICATE",
                key=key,
            )
            return self._store(self._result(key, return_id, False, "duplicate request", WAREHOUSE_UNKNOWN))

        try:
            context = self.opener.open(request_id, self.detail_url(return_id), self.deliver)
        except BlockedError as exc:
            self._registry.pop(request_id)
            log_event(
                self.logger,
                f"context blocked for {key}: {exc}",
                level=logging.ERROR,
                stage="enrich",
                event="ENRICH_BLOCKED",
                status="error",
                key=key,
                error_code=exc.error_code,
            )
            return self._store(self._result(key, return_id, False, ADDRESS_BLOCKED, WAREHOUSE_UNKNOWN))
        except BaseException:
            self._registry.pop(request_id)
            raise

        if self._registry.attach(request_id, context):
            timer.start()
        else:
            # Reply arrived before the context was attached.
            self._close_context(context, key)
        return request.future.result()

    def _enrich_isolated(self, pair: MatchedPair, timeout: float | None) -> EnrichmentResult:
        try:
            return self.enrich_one(pair.key, pair.id, timeout=timeout)
        except Exception as exc:
            self.logger.exception(
                "enrichment failed for %s",
                pair.key,
                extra={"stage": "enrich", "event": "ENRICH_FAILED", "status": "error", "key": pair.key},
            )
            return self._store(self._result(pair.key, pair.id, False, f"error: {exc}", WAREHOUSE_UNKNOWN))

    def enrich_all(
        self,
        pairs: Iterable[MatchedPair],
        *,
        max_concurrency: int | None = None,
        timeout: float | None = None,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[EnrichmentResult]:
        """Enrich pairs with at most ``max_concurrency`` requests in flight.

        Pairs are dispatched in input order; results are returned in
        completion order. A set ``cancel_token`` stops further dispatch while
        in-flight requests run to completion.
        """
        pending = list(pairs)
        total = len(pending)
        limit = self.max_concurrency if max_concurrency is None else max_concurrency
        _check_limits(limit, timeout)
        results: list[EnrichmentResult] = []
        if not pending:
            self.last_summary = summarize_results(results, 0)
            return results

        log_event(
            self.logger,
            f"enriching {total} returns with concurrency {limit}",
            stage="enrich",
            event="ENRICH_START",
            rows_in=total,
        )
        work: queue.Queue[MatchedPair] = queue.Queue()
        for pair in pending:
            work.put(pair)
        progress_lock = threading.Lock()

        def _worker() -> None:
            while True:
                if cancel_token is not None and cancel_token.is_set():
                    return
                try:
                    pair = work.get_nowait()
                except queue.Empty:
                    return
                result = self._enrich_isolated(pair, timeout)
                with progress_lock:
                    results.append(result)
                    completed = len(results)
                    log_event(
                        self.logger,
                        f"[{completed}/{total}] {result.key}: {result.warehouse}",
                        level=logging.INFO if result.success else logging.WARNING,
                        stage="enrich",
                        event="ENRICH_ITEM",
                        status="ok" if result.success else "error",
                        key=result.key,
                    )
                    if on_progress is not None:
                        on_progress(EnrichmentProgress(total_count=total, completed_count=completed, current_result=result))

        workers = [
            threading.Thread(target=_worker, name=f"enricher-{n}", daemon=True) for n in range(min(limit, total))
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        summary = summarize_results(results, total)
        self.last_summary = summary
        log_event(
            self.logger,
            f"enrichment complete: {summary.describe()}",
            stage="enrich",
            event="ENRICH_DONE",
            status="ok" if summary.failed == 0 and summary.skipped == 0 else "partial",
            rows_in=total,
            rows_out=summary.succeeded,
        )
        return results

    def get_cached_result(self, key: str) -> EnrichmentResult | None:
        with self._results_lock:
            return self._results.get(key)

    def all_cached_results(self) -> list[EnrichmentResult]:
        with self._results_lock:
            return list(self._results.values())

    def cache_info(self) -> dict[str, Any]:
        results = self.all_cached_results()
        success = sum(1 for r in results if r.success)
        return {
            "total_results": len(results),
            "success_count": success,
            "fail_count": len(results) - success,
            "processing_count": len(self._registry),
            "success_rate_percent": round(success / len(results) * 100, 1) if results else 0.0,
        }

    def clear(self) -> None:
        for request in self._registry.drain():
            self._finish(request, self._result(request.key, request.return_id, False, ADDRESS_CANCELLED, WAREHOUSE_UNKNOWN))
        with self._results_lock:
            self._results.clear()
        log_event(self.logger, "enrichment cache cleared", stage="enrich", event="CACHE_CLEARED")
