"""HTTP client with bounded retries and timeouts."""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType
from typing import Any, Mapping

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from returnsync.common.constants import USER_AGENT
from returnsync.common.errors import NetworkError, ProtocolError

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 10.0
    read: float = 30.0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    multiplier: float = 2.0
    max_wait: float = 10.0


class HttpRequestError(NetworkError):
    error_code = "HTTP_ERROR"


class RetryableHttpError(HttpRequestError):
    pass


class HttpClient:
    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.base_headers = dict(headers or {})
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _headers(self, headers: Mapping[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        out.update(self.base_headers)
        if headers:
            out.update(headers)
        return out

    def _raise_for_status_or_retry(self, response: requests.Response) -> None:
        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            raise RetryableHttpError(f"Retryable HTTP status: {status}")
        if status >= 400:
            raise HttpRequestError(f"HTTP status: {status}")

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> Any:
        req_timeout = timeout or self.timeout
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=self._headers(headers),
                timeout=(req_timeout.connect, req_timeout.read),
            )
        except requests.RequestException as exc:
            raise HttpRequestError(f"Request to {url} failed: {exc}") from exc
        self._raise_for_status_or_retry(response)

        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"Invalid JSON payload from {url}") from exc

    def request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> Any:
        @retry(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry.multiplier,
                max=self.retry.max_wait,
                jitter=1.0,
            ),
            retry=retry_if_exception_type(RetryableHttpError),
            reraise=True,
        )
        def _wrapped() -> Any:
            return self._request_json(
                method,
                url,
                params=params,
                json_body=json_body,
                headers=headers,
                timeout=timeout,
            )

        return _wrapped()

    def get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> Any:
        return self.request_json("GET", url, params=params, headers=headers, timeout=timeout)

    def post_json(
        self,
        url: str,
        *,
        body: Any,
        headers: Mapping[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> Any:
        merged = {"Content-Type": "application/json"}
        if headers:
            merged.update(headers)
        return self.request_json("POST", url, json_body=body, headers=merged, timeout=timeout)
