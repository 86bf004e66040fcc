from __future__ import annotations

import pytest
import requests

from returnsync.common.errors import NetworkError, ProtocolError
from returnsync.common.http import HttpClient, HttpRequestError, RetryConfig, RetryableHttpError


class FakeResponse:
    def __init__(self, status_code: int, payload=None, raises_json: bool = False):
        self.status_code = status_code
        self._payload = payload
        self._raises_json = raises_json

    def json(self):
        if self._raises_json:
            raise ValueError("bad json")
        return self._payload


def test_http_post_json_sends_body_and_merged_headers(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=1), headers={"Cookie": "a=b"})
    seen = {}

    def fake_request(**kwargs):
        seen.update(kwargs)
        return FakeResponse(200, {"ok": True})

    monkeypatch.setattr(client.session, "request", fake_request)
    payload = client.post_json("https://example.com/list", body={"page_number": 1}, headers={"X-CSRFToken": "t"})

    assert payload == {"ok": True}
    assert seen["method"] == "POST"
    assert seen["json"] == {"page_number": 1}
    assert seen["headers"]["Cookie"] == "a=b"
    assert seen["headers"]["X-CSRFToken"] == "t"
    assert seen["headers"]["Content-Type"] == "application/json"


def test_http_retryable_status_raises_retryable_error(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=1))
    monkeypatch.setattr(client.session, "request", lambda **_kwargs: FakeResponse(503, {"x": 1}))

    with pytest.raises(RetryableHttpError):
        client.get_json("https://example.com")


def test_http_retries_until_success(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=3, multiplier=0.0, max_wait=0.0))
    responses = [FakeResponse(429), FakeResponse(502), FakeResponse(200, {"ok": 1})]
    monkeypatch.setattr(client.session, "request", lambda **_kwargs: responses.pop(0))

    assert client.get_json("https://example.com") == {"ok": 1}
    assert responses == []


def test_http_client_error_is_not_retried(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=3, multiplier=0.0, max_wait=0.0))
    calls = []

    def fake_request(**_kwargs):
        calls.append(1)
        return FakeResponse(403)

    monkeypatch.setattr(client.session, "request", fake_request)

    with pytest.raises(HttpRequestError):
        client.get_json("https://example.com")
    assert len(calls) == 1


def test_http_transport_failure_is_network_error(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=1))

    def boom(**_kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(client.session, "request", boom)

    with pytest.raises(NetworkError):
        client.get_json("https://example.com")


def test_http_invalid_json_raises_protocol_error(monkeypatch):
    client = HttpClient(retry=RetryConfig(max_attempts=1))
    monkeypatch.setattr(client.session, "request", lambda **_kwargs: FakeResponse(200, raises_json=True))

    with pytest.raises(ProtocolError):
        client.get_json("https://example.com")
