from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from ...config import Config
from ...core.errors import DuneRequestError, ExecutionFailedError, PollTimeoutError
from ...core.materialize import check_row_type, materialize_rows
from ...core.models import (
    ExecutionHandle,
    ExecutionStatus,
    Parameter,
    PollPolicy,
    ResultSet,
    StatusResponse,
)
from ...core.ports import AsyncTransport
from ...logging.query_history import QueryHistory
from . import wire
from .client import (
    _check_query_id,
    _record_run,
    _require_complete,
    _require_page_complete,
    _result_set,
)
from .transport import AiohttpTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncDuneClient:
    """asyncio counterpart of :class:`~spice_runner.adapters.dune.client.DuneClient`.

    Waiting between polls uses ``asyncio.sleep``; cancelling the awaiting
    task (or wrapping it in ``asyncio.timeout``) interrupts polling and
    leaves the remote execution running.
    """

    def __init__(
        self,
        api_key: str,
        *,
        transport: AsyncTransport | None = None,
        poll_policy: PollPolicy | None = None,
        history: QueryHistory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.transport = transport or AiohttpTransport()
        self.poll_policy = poll_policy or PollPolicy()
        self.history = history
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> AsyncDuneClient:
        kwargs.setdefault("transport", AiohttpTransport(config.dune.api_url, config=config.http))
        kwargs.setdefault("poll_policy", config.poll)
        kwargs.setdefault("history", QueryHistory.from_env())
        return cls(config.dune.api_key, **kwargs)

    @classmethod
    def from_env(cls, **kwargs: Any) -> AsyncDuneClient:
        return cls.from_config(Config.from_env(), **kwargs)

    async def __aenter__(self) -> AsyncDuneClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    async def _call(self, request: wire.Request, *, what: str):
        response = await self.transport.send(
            request.method, request.path, headers=request.headers, body=request.body
        )
        return wire.read_payload(response, what=what)

    async def submit(
        self,
        query_id: int,
        parameters: Sequence[Parameter] | None = None,
        *,
        performance: str | None = None,
    ) -> ExecutionHandle:
        """Start one remote execution. Not idempotent, see ``DuneClient.submit``."""
        _check_query_id(query_id)
        request = wire.submit_request(self.api_key, query_id, parameters, performance=performance)
        payload = await self._call(request, what=f"execute query {query_id}")
        handle = wire.parse_submit(payload, query_id)
        logger.info("submitted query_id=%s execution_id=%s", query_id, handle.execution_id)
        return handle

    async def get_status(self, handle: ExecutionHandle) -> StatusResponse:
        request = wire.status_request(self.api_key, handle.execution_id)
        status = wire.parse_status(await self._call(request, what=f"status of {handle.execution_id}"))
        handle.observe(status.state)
        return status

    async def poll_status(self, handle: ExecutionHandle) -> ExecutionStatus:
        await self.get_status(handle)
        return handle.state  # type: ignore[return-value]

    async def await_completion(self, handle: ExecutionHandle, policy: PollPolicy | None = None) -> ExecutionStatus:
        await self._await(handle, policy)
        return handle.state  # type: ignore[return-value]

    async def _await(self, handle: ExecutionHandle, policy: PollPolicy | None) -> StatusResponse:
        policy = policy or self.poll_policy
        delays = policy.delays()
        start = self._clock()
        attempts = 0
        while True:
            status = await self.get_status(handle)
            attempts += 1
            elapsed = self._clock() - start
            if handle.state.is_terminal:  # type: ignore[union-attr]
                logger.info("execution_id=%s finished in state %s", handle.execution_id, handle.state.name)  # type: ignore[union-attr]
                return status
            if policy.max_attempts is not None and attempts >= policy.max_attempts:
                raise PollTimeoutError(handle.execution_id, attempts=attempts, elapsed=elapsed)
            delay = next(delays)
            if policy.timeout_seconds is not None:
                remaining = policy.timeout_seconds - elapsed
                if remaining <= 0:
                    raise PollTimeoutError(handle.execution_id, attempts=attempts, elapsed=elapsed)
                delay = min(delay, remaining)
            await self._sleep(delay)

    async def fetch_results(
        self,
        handle: ExecutionHandle,
        row_type: type[T] = dict,  # type: ignore[assignment]
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> ResultSet[T]:
        _require_complete(handle)
        check_row_type(row_type)
        rows: list[Any] = []
        first: wire.ResultsPage | None = None
        next_offset = offset
        while True:
            page_limit = None if limit is None else limit - len(rows)
            request = wire.results_request(self.api_key, handle.execution_id, limit=page_limit, offset=next_offset)
            page = wire.parse_results_page(await self._call(request, what=f"results of {handle.execution_id}"))
            _require_page_complete(handle, page)
            first = first or page
            rows.extend(page.rows)
            if page.next_offset is None or not page.rows or (limit is not None and len(rows) >= limit):
                break
            next_offset = page.next_offset
        if limit is not None:
            rows = rows[:limit]
        return _result_set(handle, first, materialize_rows(rows, row_type))

    async def cancel(self, handle: ExecutionHandle) -> bool:
        if handle.state is not None and handle.state.is_terminal:
            return True
        request = wire.cancel_request(self.api_key, handle.execution_id)
        success = wire.parse_cancel(await self._call(request, what=f"cancel {handle.execution_id}"))
        logger.info("cancel requested for execution_id=%s success=%s", handle.execution_id, success)
        return success

    async def run_to_completion(
        self,
        query_id: int,
        parameters: Sequence[Parameter] | None = None,
        policy: PollPolicy | None = None,
        *,
        row_type: type[T] = dict,  # type: ignore[assignment]
        performance: str | None = None,
        limit: int | None = None,
    ) -> ResultSet[T]:
        check_row_type(row_type)
        t_start = time.time()
        handle: ExecutionHandle | None = None
        try:
            handle = await self.submit(query_id, parameters, performance=performance)
            status = await self._await(handle, policy)
            if handle.state is not ExecutionStatus.COMPLETE:
                raise ExecutionFailedError(handle.execution_id, handle.state, status.error)
            result = await self.fetch_results(handle, row_type, limit=limit)
        except DuneRequestError as exc:
            _record_run(self.history, query_id, parameters, handle, t_start, error=str(exc))
            raise
        _record_run(self.history, query_id, parameters, handle, t_start, rowcount=len(result))
        return result

    refresh = run_to_completion
