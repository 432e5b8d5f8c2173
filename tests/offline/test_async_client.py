from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass

import pytest

from spice_runner import (
    AsyncDuneClient,
    ExecutionHandle,
    ExecutionStateError,
    ExecutionStatus,
    PollPolicy,
    PollTimeoutError,
    f64_from_str,
    wire_field,
)
from spice_runner.core.ports import TransportResponse
from tests.support.stubs import (
    AsyncRecordingSleep,
    AsyncStubTransport,
    results_payload,
    status_payload,
    stub_response,
)


@dataclass
class PriceRow:
    symbol: str
    max_price: float = wire_field(f64_from_str)


def make_client(responses, **kwargs):
    transport = AsyncStubTransport(responses)
    kwargs.setdefault("sleep", AsyncRecordingSleep())
    return AsyncDuneClient("test-key", transport=transport, **kwargs), transport


@pytest.mark.asyncio
async def test_async_run_to_completion():
    client, transport = make_client(
        [
            stub_response({"execution_id": "01EXEC", "state": "QUERY_STATE_PENDING"}),
            stub_response(status_payload("QUERY_STATE_PENDING")),
            stub_response(status_payload("QUERY_STATE_COMPLETED")),
            stub_response(results_payload([{"symbol": "ETH", "max_price": "1234.5"}])),
        ]
    )
    result = await client.run_to_completion(971694, row_type=PriceRow)
    assert result.rows == [PriceRow("ETH", 1234.5)]
    assert len(transport.calls) == 4


@pytest.mark.asyncio
async def test_async_await_completion_attempt_limit():
    statuses = ["QUERY_STATE_PENDING", "QUERY_STATE_EXECUTING", "QUERY_STATE_COMPLETED"]

    client, transport = make_client([stub_response(status_payload(s)) for s in statuses])
    assert await client.await_completion(ExecutionHandle("01EXEC"), PollPolicy(max_attempts=3)) is ExecutionStatus.COMPLETE
    assert len(transport.calls) == 3

    client, transport = make_client([stub_response(status_payload(s)) for s in statuses])
    with pytest.raises(PollTimeoutError):
        await client.await_completion(ExecutionHandle("01EXEC"), PollPolicy(max_attempts=2))
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_async_fetch_requires_complete():
    client, transport = make_client([])
    with pytest.raises(ExecutionStateError):
        await client.fetch_results(ExecutionHandle("01EXEC", state=ExecutionStatus.FAILED))
    assert transport.calls == []


@pytest.mark.asyncio
async def test_async_cancel_is_idempotent_for_terminal_handles():
    client, transport = make_client([stub_response({"success": True})])
    assert await client.cancel(ExecutionHandle("01EXEC", state=ExecutionStatus.CANCELLED)) is True
    assert transport.calls == []
    assert await client.cancel(ExecutionHandle("01EXEC", state=ExecutionStatus.PENDING)) is True
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_task_cancellation_interrupts_polling():
    client, transport = make_client(
        [stub_response(status_payload("QUERY_STATE_EXECUTING")) for _ in range(5)],
        sleep=asyncio.sleep,
    )
    task = asyncio.create_task(client.await_completion(ExecutionHandle("01EXEC"), PollPolicy(interval=30.0)))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(transport.calls) == 1


class RoutingTransport:
    """Answers per query/execution id; every execution completes after one pending poll."""

    def __init__(self):
        self.calls = []
        self._polls: dict[str, int] = {}

    async def send(self, method, path, *, headers, body=None):
        self.calls.append((method, path))
        await asyncio.sleep(0)
        parts = path.split("?")[0].strip("/").split("/")
        if parts[0] == "query":
            return _json({"execution_id": f"exec-{parts[1]}", "state": "QUERY_STATE_PENDING"})
        execution_id = parts[1]
        if parts[2] == "status":
            self._polls[execution_id] = self._polls.get(execution_id, 0) + 1
            state = "QUERY_STATE_COMPLETED" if self._polls[execution_id] > 1 else "QUERY_STATE_PENDING"
            return _json(status_payload(state, execution_id=execution_id))
        return _json(results_payload([{"symbol": execution_id, "max_price": "1"}], execution_id=execution_id))


def _json(data) -> TransportResponse:
    return TransportResponse(status_code=200, body=json.dumps(data).encode("utf-8"))


@pytest.mark.asyncio
async def test_concurrent_runs_are_isolated():
    transport = RoutingTransport()
    client = AsyncDuneClient("test-key", transport=transport, sleep=AsyncRecordingSleep())

    first, second = await asyncio.gather(
        client.run_to_completion(111, row_type=PriceRow),
        client.run_to_completion(222, row_type=PriceRow),
    )

    assert first.execution_id == "exec-111"
    assert second.execution_id == "exec-222"
    assert [r.symbol for r in first] == ["exec-111"]
    assert [r.symbol for r in second] == ["exec-222"]


@pytest.mark.asyncio
async def test_async_unsupported_row_type_is_rejected_before_submit():
    client, transport = make_client([stub_response({"execution_id": "01EXEC"})])
    with pytest.raises(ExecutionStateError):
        await client.run_to_completion(971694, row_type=int)
    assert transport.calls == []
