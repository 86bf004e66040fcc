"""Credential header acquisition with a bounded capture window and fallback."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Mapping

from returnsync.common.errors import AuthError
from returnsync.common.logging import log_event

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "X-Requested-With": "XMLHttpRequest",
}

COOKIE_ENV = "RETURNSYNC_COOKIE"
CSRF_ENV = "RETURNSYNC_CSRF_TOKEN"

HeaderCapture = Callable[[], "Mapping[str, str] | None"]


class CredentialProvider:
    """Resolves the header set used for every list and detail request.

    ``capture`` is tried for at most ``capture_timeout`` seconds. When it
    yields nothing the default header set is used, with ``X-CSRFToken``
    added if a token is known.
    """

    def __init__(
        self,
        capture: HeaderCapture | None = None,
        *,
        capture_timeout: float = 3.0,
        default_headers: Mapping[str, str] | None = None,
        csrf_token: str | None = None,
        allow_default_headers: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.capture = capture
        self.capture_timeout = capture_timeout
        self.default_headers = dict(default_headers if default_headers is not None else DEFAULT_HEADERS)
        self.csrf_token = csrf_token
        self.allow_default_headers = allow_default_headers
        self.logger = logger or logging.getLogger(__name__)
        self._resolved: dict[str, str] | None = None

    @classmethod
    def from_environment(
        cls,
        env: Mapping[str, str] | None = None,
        **kwargs,
    ) -> "CredentialProvider":
        source = os.environ if env is None else env

        def _capture() -> dict[str, str] | None:
            cookie = source.get(COOKIE_ENV)
            if not cookie:
                return None
            headers = {**DEFAULT_HEADERS, "Cookie": cookie}
            token = source.get(CSRF_ENV)
            if token:
                headers["X-CSRFToken"] = token
            return headers

        kwargs.setdefault("csrf_token", source.get(CSRF_ENV) or None)
        return cls(_capture, **kwargs)

    def _run_capture(self) -> dict[str, str] | None:
        if self.capture is None:
            return None
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="credential-capture")
        try:
            future = executor.submit(self.capture)
            captured = future.result(timeout=self.capture_timeout)
        except FutureTimeout:
            log_event(self.logger, "credential capture timed out", level=logging.WARNING, event="AUTH_CAPTURE_TIMEOUT")
            return None
        except Exception as exc:
            log_event(
                self.logger,
                f"credential capture failed: {exc}",
                level=logging.WARNING,
                event="AUTH_CAPTURE_FAILED",
                status="error",
            )
            return None
        finally:
            executor.shutdown(wait=False)
        if not captured:
            return None
        return {str(k): str(v) for k, v in captured.items()}

    def resolve(self) -> dict[str, str]:
        if self._resolved is not None:
            return dict(self._resolved)

        captured = self._run_capture()
        if captured:
            log_event(self.logger, "captured credential headers", event="AUTH_CAPTURED", status="ok")
            self._resolved = captured
            return dict(captured)

        if not self.allow_default_headers:
            raise AuthError("No credential headers captured and default headers are disabled")

        headers = dict(self.default_headers)
        if self.csrf_token:
            headers["X-CSRFToken"] = self.csrf_token
        if not headers:
            raise AuthError("Default header set is empty")
        log_event(self.logger, "using default credential headers", level=logging.WARNING, event="AUTH_FALLBACK")
        self._resolved = headers
        return dict(headers)

    def clear(self) -> None:
        self._resolved = None
