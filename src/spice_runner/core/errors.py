from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class DuneRequestError(Exception):
    """Base class for every failure raised by the client."""

    kind = "error"


class DuneError(DuneRequestError):
    """The Dune API rejected the request (bad key, unknown query, bad parameter)."""

    kind = "dune"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"Dune API error: {self.message}"


class ExecutionFailedError(DuneError):
    """An execution reached FAILED or CANCELLED instead of COMPLETE."""

    def __init__(self, execution_id: str, state: Any, message: str | None = None):
        detail = f"execution_id={execution_id} state={getattr(state, 'name', state)}"
        if message:
            detail += f", error={message}"
        super().__init__(detail)
        self.execution_id = execution_id
        self.state = state
        self.remote_message = message


class RequestError(DuneRequestError):
    """Network or HTTP-level failure below the Dune error envelope."""

    kind = "request"

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"request error: {self.message} (status={self.status_code})"
        return f"request error: {self.message}"


class PollTimeoutError(DuneRequestError):
    """Polling gave up before the execution reached a terminal state.

    The remote execution is left running.
    """

    kind = "timeout"

    def __init__(self, execution_id: str, *, attempts: int, elapsed: float, reason: str = "timed out"):
        super().__init__(
            f"polling {reason} for execution_id={execution_id} "
            f"after {attempts} attempts ({elapsed:.2f}s)"
        )
        self.execution_id = execution_id
        self.attempts = attempts
        self.elapsed = elapsed


class PollAbortedError(PollTimeoutError):
    """The caller's stop event fired while waiting between polls."""

    def __init__(self, execution_id: str, *, attempts: int, elapsed: float):
        super().__init__(execution_id, attempts=attempts, elapsed=elapsed, reason="aborted")


class ExecutionStateError(DuneRequestError):
    """An operation was called while its precondition does not hold."""

    kind = "logic"


class DecodeError(DuneRequestError):
    """A wire value could not be coerced into the declared field type."""

    kind = "decode"

    def __init__(
        self,
        reason: str,
        *,
        value: Any = None,
        field: str | None = None,
        row_index: int | None = None,
    ):
        self.reason = reason
        self.value = value
        self.field = field
        self.row_index = row_index
        super().__init__(self._render())

    def _render(self) -> str:
        where = []
        if self.row_index is not None:
            where.append(f"row {self.row_index}")
        if self.field is not None:
            where.append(f"field {self.field!r}")
        prefix = ", ".join(where)
        return f"{prefix}: {self.reason}" if prefix else self.reason

    def locate(self, *, field: str, row_index: int) -> DecodeError:
        """Return a copy of this error annotated with its position in the result set."""
        return DecodeError(self.reason, value=self.value, field=field, row_index=row_index)


def error_response(exc: BaseException, *, context: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Render an exception as a JSON-friendly payload."""
    payload: dict[str, Any] = {
        "ok": False,
        "error": {
            "kind": getattr(exc, "kind", "internal"),
            "type": type(exc).__name__,
            "message": str(exc),
        },
    }
    for attr in ("execution_id", "status_code", "field", "row_index", "attempts"):
        value = getattr(exc, attr, None)
        if value is not None:
            payload["error"][attr] = value
    if context:
        payload["context"] = {k: v for k, v in context.items() if v is not None}
    return payload
