"""Request shapes and response interpretation shared by the sync and async clients."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ...core.errors import DecodeError, DuneError, RequestError
from ...core.models import (
    ExecutionHandle,
    ExecutionStatus,
    ExecutionTimes,
    Parameter,
    ResultMetadata,
    StatusResponse,
    parameters_to_wire,
)
from ...core.ports import TransportResponse
from . import urls

_BODY_PREVIEW = 500


@dataclass(frozen=True)
class Request:
    method: str
    path: str
    headers: dict[str, str]
    body: bytes | None = None


@dataclass(frozen=True)
class ResultsPage:
    rows: list[Mapping[str, Any]]
    metadata: ResultMetadata | None
    state: ExecutionStatus
    query_id: int | None
    times: ExecutionTimes
    next_offset: int | None


def submit_request(
    api_key: str,
    query_id: int,
    parameters: Sequence[Parameter] | None = None,
    *,
    performance: str | None = None,
) -> Request:
    data: dict[str, Any] = {}
    if parameters:
        data["query_parameters"] = parameters_to_wire(parameters)
    if performance is not None:
        data["performance"] = performance
    return Request(
        "POST",
        urls.get_query_execute_path(query_id),
        urls.get_headers(api_key=api_key, json_body=True),
        json.dumps(data).encode("utf-8"),
    )


def status_request(api_key: str, execution_id: str) -> Request:
    return Request("GET", urls.get_execution_status_path(execution_id), urls.get_headers(api_key=api_key))


def results_request(api_key: str, execution_id: str, *, limit: int | None, offset: int | None) -> Request:
    path = urls.get_execution_results_path(execution_id, {"limit": limit, "offset": offset})
    return Request("GET", path, urls.get_headers(api_key=api_key))


def cancel_request(api_key: str, execution_id: str) -> Request:
    return Request(
        "POST",
        urls.get_execution_cancel_path(execution_id),
        urls.get_headers(api_key=api_key, json_body=True),
        b"{}",
    )


def read_payload(response: TransportResponse, *, what: str) -> Mapping[str, Any]:
    """Classify a raw response as a JSON payload, a Dune error, or a request error."""
    try:
        payload = json.loads(response.body) if response.body else None
    except (ValueError, UnicodeDecodeError):
        payload = None

    if isinstance(payload, Mapping) and isinstance(payload.get("error"), str) and (
        not response.ok or "execution_id" not in payload
    ):
        raise DuneError(payload["error"])
    if not response.ok:
        raise RequestError(
            f"{what} returned HTTP {response.status_code}",
            status_code=response.status_code,
            body=_preview(response.body),
        )
    if not isinstance(payload, Mapping):
        raise RequestError(
            f"{what} returned a body that is not a JSON object",
            status_code=response.status_code,
            body=_preview(response.body),
        )
    return payload


def parse_submit(payload: Mapping[str, Any], query_id: int) -> ExecutionHandle:
    if "execution_id" not in payload:
        raise RequestError("submit response has no execution_id", body=_preview(payload))
    handle = ExecutionHandle(execution_id=str(payload["execution_id"]), query_id=query_id)
    state = payload.get("state")
    if state is not None:
        handle.observe(_state(state))
    return handle


def parse_status(payload: Mapping[str, Any]) -> StatusResponse:
    try:
        return StatusResponse.from_payload(payload)
    except (KeyError, ValueError, TypeError, DecodeError) as exc:
        raise RequestError(f"malformed status response: {exc}", body=_preview(payload)) from exc


def parse_results_page(payload: Mapping[str, Any]) -> ResultsPage:
    try:
        result = payload.get("result") or {}
        rows = result.get("rows") or []
        if not isinstance(rows, list):
            raise TypeError("result.rows is not a list")
        metadata = result.get("metadata")
        next_offset = payload.get("next_offset")
        return ResultsPage(
            rows=rows,
            metadata=ResultMetadata.from_payload(metadata) if metadata else None,
            state=_state(payload["state"]),
            query_id=payload.get("query_id"),
            times=ExecutionTimes.from_payload(payload),
            next_offset=int(next_offset) if next_offset is not None else None,
        )
    except (KeyError, ValueError, TypeError, DecodeError) as exc:
        raise RequestError(f"malformed results response: {exc}", body=_preview(payload)) from exc


def parse_cancel(payload: Mapping[str, Any]) -> bool:
    return bool(payload.get("success", False))


def _state(value: Any) -> ExecutionStatus:
    try:
        return ExecutionStatus.from_wire(value)
    except ValueError as exc:
        raise RequestError(str(exc)) from exc


def _preview(body: Any) -> str:
    if isinstance(body, bytes):
        return body[:_BODY_PREVIEW].decode("utf-8", errors="replace")
    return str(body)[:_BODY_PREVIEW]
