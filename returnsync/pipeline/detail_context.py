"""HTTP-backed external context that fetches a return detail page in the background."""

from __future__ import annotations

import logging
import threading
from typing import Any, Sequence

from returnsync.common.constants import ADDRESS_EVENT_TYPE
from returnsync.common.credentials import CredentialProvider
from returnsync.common.errors import BlockedError, PipelineError
from returnsync.common.http import HttpClient
from returnsync.common.logging import log_event
from returnsync.pipeline.enricher import Deliver


def _lookup_path(payload: Any, path: str) -> Any:
    current = payload
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def lookup_address(payload: Any, candidates: Sequence[str]) -> str | None:
    for path in candidates:
        value = _lookup_path(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class DetailRequestContext:
    """One detail fetch whose outcome is posted back through ``deliver``.

    Once closed, the context never delivers.
    """

    def __init__(
        self,
        request_id: str,
        url: str,
        *,
        client: HttpClient,
        headers: dict[str, str],
        address_fields: Sequence[str],
        deliver: Deliver,
        logger: logging.Logger,
    ) -> None:
        self.request_id = request_id
        self.url = url
        self.client = client
        self.headers = headers
        self.address_fields = address_fields
        self.deliver = deliver
        self.logger = logger
        self._closed = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"detail-{request_id}", daemon=True)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def start(self) -> None:
        self._thread.start()

    def close(self) -> None:
        self._closed.set()

    def _fetch_address(self) -> tuple[bool, str | None]:
        try:
            payload = self.client.get_json(self.url, headers=self.headers)
        except PipelineError as exc:
            log_event(
                self.logger,
                f"detail fetch failed for {self.request_id}: {exc}",
                level=logging.WARNING,
                stage="enrich",
                event="DETAIL_FAILED",
                status="error",
                error_code=exc.error_code,
            )
            return False, None
        if isinstance(payload, dict) and payload.get("error") not in (None, 0):
            log_event(
                self.logger,
                f"detail API error for {self.request_id}: {payload.get('error_msg') or payload.get('error')}",
                level=logging.WARNING,
                stage="enrich",
                event="DETAIL_FAILED",
                status="error",
            )
            return False, None
        address = lookup_address(payload, self.address_fields)
        return address is not None, address

    def _run(self) -> None:
        success, address = self._fetch_address()
        if self.closed:
            return
        self.deliver(
            {
                "type": ADDRESS_EVENT_TYPE,
                "orderId": self.request_id,
                "success": success,
                "address": address,
            }
        )


class HttpDetailOpener:
    def __init__(
        self,
        client: HttpClient,
        credentials: CredentialProvider,
        *,
        address_fields: Sequence[str],
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.credentials = credentials
        self.address_fields = list(address_fields)
        self.logger = logger or logging.getLogger(__name__)

    def open(self, request_id: str, url: str, deliver: Deliver) -> DetailRequestContext:
        context = DetailRequestContext(
            request_id,
            url,
            client=self.client,
            headers=self.credentials.resolve(),
            address_fields=self.address_fields,
            deliver=deliver,
            logger=self.logger,
        )
        try:
            context.start()
        except RuntimeError as exc:
            raise BlockedError(f"Could not start detail request for {request_id}: {exc}") from exc
        return context
