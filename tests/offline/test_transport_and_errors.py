from __future__ import annotations

import requests

import pytest

from spice_runner.adapters.dune import urls, wire
from spice_runner.adapters.dune.transport import RequestsTransport
from spice_runner.adapters.http_client import HttpClient
from spice_runner.config import HttpClientConfig
from spice_runner.core.errors import (
    DecodeError,
    DuneError,
    ExecutionStateError,
    PollTimeoutError,
    RequestError,
    error_response,
)
from spice_runner.core.ports import TransportResponse


class StubResponse:
    def __init__(self, status: int = 200, content: bytes = b"{}", headers: dict | None = None):
        self.status_code = status
        self.content = content
        self.headers = headers or {}


class StubSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        pass


def test_http_client_retries_get_when_opted_in():
    session = StubSession([StubResponse(429), StubResponse(502), StubResponse(200)])
    sleeps = []
    client = HttpClient(HttpClientConfig(max_retries=3, backoff_seconds=0.5), session=session, sleep=sleeps.append)

    response = client.request("GET", "https://x.test/status")

    assert response.status_code == 200
    assert len(session.calls) == 3
    assert sleeps == [0.5, 1.0]
    assert session.calls[0][2]["timeout"] == 30.0


def test_http_client_does_not_retry_by_default():
    session = StubSession([StubResponse(429)])
    client = HttpClient(session=session, sleep=lambda _: None)
    assert client.request("GET", "https://x.test/status").status_code == 429
    assert len(session.calls) == 1


def test_http_client_never_retries_post():
    session = StubSession([StubResponse(502)])
    client = HttpClient(HttpClientConfig(max_retries=5), session=session, sleep=lambda _: None)
    assert client.request("POST", "https://x.test/execute").status_code == 502
    assert len(session.calls) == 1


def test_requests_transport_maps_connection_errors():
    session = StubSession([requests.ConnectionError("refused")])
    transport = RequestsTransport("https://x.test/api/v1/", http_client=HttpClient(session=session))
    with pytest.raises(RequestError, match="refused"):
        transport.send("GET", "/execution/e/status", headers={})
    assert session.calls[0][1] == "https://x.test/api/v1/execution/e/status"


def test_requests_transport_returns_raw_response():
    session = StubSession([StubResponse(201, b'{"a": 1}', {"content-type": "application/json"})])
    transport = RequestsTransport(http_client=HttpClient(session=session))
    response = transport.send("POST", "/query/1/execute", headers={"X-Dune-API-Key": "k"}, body=b"{}")
    assert response == TransportResponse(201, b'{"a": 1}', {"content-type": "application/json"})
    assert session.calls[0][2]["data"] == b"{}"


def test_results_path_drops_empty_params():
    assert urls.get_execution_results_path("e", {"limit": None, "offset": None}) == "/execution/e/results"
    assert urls.get_execution_results_path("e", {"limit": 5, "offset": 10}) == "/execution/e/results?limit=5&offset=10"


def test_read_payload_rejects_non_object_bodies():
    with pytest.raises(RequestError):
        wire.read_payload(TransportResponse(200, b"[1, 2]"), what="status")
    with pytest.raises(RequestError):
        wire.read_payload(TransportResponse(200, b""), what="status")


def test_read_payload_error_envelope_on_success_status():
    with pytest.raises(DuneError, match="invalid"):
        wire.read_payload(TransportResponse(200, b'{"error": "The requested execution ID (ID: x) is invalid."}'), what="status")


def test_submit_response_without_execution_id():
    with pytest.raises(RequestError):
        wire.parse_submit({"state": "QUERY_STATE_PENDING"}, 1)


def test_error_response_payloads():
    payload = error_response(DecodeError("bad", field="max_price", row_index=3), context={"tool": "run", "skip": None})
    assert payload["ok"] is False
    assert payload["error"]["kind"] == "decode"
    assert payload["error"]["field"] == "max_price"
    assert payload["error"]["row_index"] == 3
    assert payload["context"] == {"tool": "run"}

    timeout = error_response(PollTimeoutError("e", attempts=2, elapsed=1.0))
    assert timeout["error"]["kind"] == "timeout"
    assert timeout["error"]["execution_id"] == "e"

    assert error_response(ExecutionStateError("nope"))["error"]["kind"] == "logic"
    assert error_response(RequestError("x", status_code=500))["error"]["status_code"] == 500
    assert error_response(RuntimeError("boom"))["error"]["kind"] == "internal"
