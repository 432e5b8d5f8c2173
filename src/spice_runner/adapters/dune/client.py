from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from ...config import Config
from ...core.errors import (
    DuneError,
    DuneRequestError,
    ExecutionFailedError,
    ExecutionStateError,
    PollAbortedError,
    PollTimeoutError,
)
from ...core.materialize import check_row_type, materialize_rows
from ...core.models import (
    ExecutionHandle,
    ExecutionStatus,
    Parameter,
    PollPolicy,
    ResultSet,
    StatusResponse,
    parameters_to_wire,
)
from ...core.ports import Transport
from ...logging.query_history import QueryHistory
from . import wire
from .transport import RequestsTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DuneClient:
    """Run saved Dune queries and decode their results.

    ``run_to_completion`` is the main entry point. ``submit``,
    ``poll_status``, ``await_completion``, ``fetch_results`` and ``cancel``
    give manual control over each step of an execution's lifecycle.

    The client keeps no per-execution state, so one instance can serve many
    concurrent runs; each run's state lives on its own ExecutionHandle.
    """

    def __init__(
        self,
        api_key: str,
        *,
        transport: Transport | None = None,
        poll_policy: PollPolicy | None = None,
        history: QueryHistory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.transport = transport or RequestsTransport()
        self.poll_policy = poll_policy or PollPolicy()
        self.history = history
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> DuneClient:
        from ..http_client import HttpClient

        kwargs.setdefault(
            "transport",
            RequestsTransport(config.dune.api_url, http_client=HttpClient(config.http)),
        )
        kwargs.setdefault("poll_policy", config.poll)
        kwargs.setdefault("history", QueryHistory.from_env())
        return cls(config.dune.api_key, **kwargs)

    @classmethod
    def from_env(cls, **kwargs: Any) -> DuneClient:
        """Build a client from ``DUNE_API_KEY`` (and a local ``.env`` if present)."""
        return cls.from_config(Config.from_env(), **kwargs)

    def __enter__(self) -> DuneClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()

    def _call(self, request: wire.Request, *, what: str):
        response = self.transport.send(
            request.method, request.path, headers=request.headers, body=request.body
        )
        return wire.read_payload(response, what=what)

    def submit(
        self,
        query_id: int,
        parameters: Sequence[Parameter] | None = None,
        *,
        performance: str | None = None,
    ) -> ExecutionHandle:
        """Start one remote execution of ``query_id``.

        Not idempotent: every successful call creates a new (billable) remote
        execution. Do not retry blindly after a RequestError, the first
        submission may have been accepted before the connection failed.
        """
        _check_query_id(query_id)
        request = wire.submit_request(self.api_key, query_id, parameters, performance=performance)
        payload = self._call(request, what=f"execute query {query_id}")
        handle = wire.parse_submit(payload, query_id)
        logger.info("submitted query_id=%s execution_id=%s", query_id, handle.execution_id)
        return handle

    def get_status(self, handle: ExecutionHandle) -> StatusResponse:
        """Fetch the full status payload and record its state on ``handle``."""
        request = wire.status_request(self.api_key, handle.execution_id)
        status = wire.parse_status(self._call(request, what=f"status of {handle.execution_id}"))
        handle.observe(status.state)
        return status

    def poll_status(self, handle: ExecutionHandle) -> ExecutionStatus:
        self.get_status(handle)
        return handle.state  # type: ignore[return-value]

    def await_completion(
        self,
        handle: ExecutionHandle,
        policy: PollPolicy | None = None,
        *,
        stop_event: threading.Event | None = None,
    ) -> ExecutionStatus:
        """Poll until ``handle`` reaches a terminal state.

        Raises PollTimeoutError when the policy's attempt or time budget runs
        out, and PollAbortedError when ``stop_event`` is set while waiting.
        The remote execution is never cancelled by this method.
        """
        self._await(handle, policy, stop_event)
        return handle.state  # type: ignore[return-value]

    def _await(
        self,
        handle: ExecutionHandle,
        policy: PollPolicy | None,
        stop_event: threading.Event | None,
    ) -> StatusResponse:
        policy = policy or self.poll_policy
        delays = policy.delays()
        start = self._clock()
        attempts = 0
        while True:
            if stop_event is not None and stop_event.is_set():
                raise PollAbortedError(handle.execution_id, attempts=attempts, elapsed=self._clock() - start)

            status = self.get_status(handle)
            attempts += 1
            elapsed = self._clock() - start
            logger.debug(
                "waiting for results, execution_id=%s state=%s attempt=%d t=%.2f",
                handle.execution_id,
                handle.state.name,  # type: ignore[union-attr]
                attempts,
                elapsed,
            )
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

            if stop_event is not None:
                if stop_event.wait(delay):
                    raise PollAbortedError(handle.execution_id, attempts=attempts, elapsed=self._clock() - start)
            else:
                self._sleep(delay)

    def fetch_results(
        self,
        handle: ExecutionHandle,
        row_type: type[T] = dict,  # type: ignore[assignment]
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> ResultSet[T]:
        """Download and decode all rows of a COMPLETE execution.

        Pages are followed until exhausted or ``limit`` rows are collected.
        Any row that cannot be decoded into ``row_type`` fails the whole call.
        """
        _require_complete(handle)
        check_row_type(row_type)
        rows: list[Any] = []
        first: wire.ResultsPage | None = None
        next_offset = offset
        while True:
            page_limit = None if limit is None else limit - len(rows)
            request = wire.results_request(self.api_key, handle.execution_id, limit=page_limit, offset=next_offset)
            page = wire.parse_results_page(self._call(request, what=f"results of {handle.execution_id}"))
            _require_page_complete(handle, page)
            first = first or page
            rows.extend(page.rows)
            logger.debug("execution_id=%s fetched %d rows (total %d)", handle.execution_id, len(page.rows), len(rows))
            if page.next_offset is None or not page.rows or (limit is not None and len(rows) >= limit):
                break
            next_offset = page.next_offset
        if limit is not None:
            rows = rows[:limit]
        return _result_set(handle, first, materialize_rows(rows, row_type))

    def cancel(self, handle: ExecutionHandle) -> bool:
        """Ask Dune to cancel the execution without waiting for it to stop.

        An execution already known to be terminal is acknowledged locally.
        """
        if handle.state is not None and handle.state.is_terminal:
            logger.info("execution_id=%s already %s, nothing to cancel", handle.execution_id, handle.state.name)
            return True
        request = wire.cancel_request(self.api_key, handle.execution_id)
        success = wire.parse_cancel(self._call(request, what=f"cancel {handle.execution_id}"))
        logger.info("cancel requested for execution_id=%s success=%s", handle.execution_id, success)
        return success

    def run_to_completion(
        self,
        query_id: int,
        parameters: Sequence[Parameter] | None = None,
        policy: PollPolicy | None = None,
        *,
        row_type: type[T] = dict,  # type: ignore[assignment]
        performance: str | None = None,
        limit: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> ResultSet[T]:
        """Submit ``query_id``, wait for it to finish and return its decoded rows."""
        check_row_type(row_type)
        t_start = time.time()
        handle: ExecutionHandle | None = None
        try:
            handle = self.submit(query_id, parameters, performance=performance)
            status = self._await(handle, policy, stop_event)
            if handle.state is not ExecutionStatus.COMPLETE:
                raise ExecutionFailedError(handle.execution_id, handle.state, status.error)
            result = self.fetch_results(handle, row_type, limit=limit)
        except DuneRequestError as exc:
            _record_run(self.history, query_id, parameters, handle, t_start, error=str(exc))
            raise
        _record_run(self.history, query_id, parameters, handle, t_start, rowcount=len(result))
        return result

    refresh = run_to_completion


def _record_run(
    history: QueryHistory | None,
    query_id: int,
    parameters: Sequence[Parameter] | None,
    handle: ExecutionHandle | None,
    t_start: float,
    *,
    rowcount: int | None = None,
    error: str | None = None,
) -> None:
    if history is None:
        return
    history.record(
        query_id=query_id,
        execution_id=handle.execution_id if handle else None,
        state=handle.state.name if handle and handle.state else None,
        rowcount=rowcount,
        duration_ms=int((time.time() - t_start) * 1000),
        error=error,
        parameters=parameters_to_wire(parameters) or None,
    )


def _check_query_id(query_id: int) -> None:
    if isinstance(query_id, bool) or not isinstance(query_id, int) or query_id <= 0:
        raise ExecutionStateError(f"query_id must be a positive integer, got {query_id!r}")


def _require_complete(handle: ExecutionHandle) -> None:
    if handle.state is not ExecutionStatus.COMPLETE:
        state = handle.state.name if handle.state else "UNKNOWN"
        raise ExecutionStateError(
            f"results are only available for COMPLETE executions; "
            f"execution_id={handle.execution_id} is {state}"
        )


def _require_page_complete(handle: ExecutionHandle, page: wire.ResultsPage) -> None:
    if page.state is not ExecutionStatus.COMPLETE:
        raise DuneError(f"results for execution_id={handle.execution_id} reported state {page.state.name}")


def _result_set(handle: ExecutionHandle, page: wire.ResultsPage | None, rows: list[T]) -> ResultSet[T]:
    assert page is not None
    metadata = page.metadata
    if metadata is not None and metadata.row_count != len(rows):
        # first-page metadata; row_count reflects the rows actually gathered
        metadata = dataclasses.replace(metadata, row_count=len(rows))
    return ResultSet(
        execution_id=handle.execution_id,
        query_id=page.query_id if page.query_id is not None else handle.query_id,
        rows=rows,
        metadata=metadata,
        state=page.state,
        times=page.times,
    )
