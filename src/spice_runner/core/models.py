from __future__ import annotations

import dataclasses
import datetime
import enum
import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .decode import datetime_from_str, optional_datetime_from_str

if TYPE_CHECKING:
    import polars as pl

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ParameterType(enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    ENUM = "enum"


@dataclass(frozen=True)
class Parameter:
    """A named value for a parameterized query.

    ``key`` must match the parameter name declared on the saved query; it is
    not validated locally. Every kind is sent to the API as a string, and
    invalid values surface as a remote error or a FAILED execution.
    """

    key: str
    kind: ParameterType
    value: str

    @classmethod
    def text(cls, name: str, value: str) -> Parameter:
        return cls(name, ParameterType.TEXT, str(value))

    @classmethod
    def number(cls, name: str, value: str | int | float) -> Parameter:
        return cls(name, ParameterType.NUMBER, str(value))

    @classmethod
    def list(cls, name: str, value: str | Sequence[str]) -> Parameter:
        """Dropdown-style parameter; a sequence is sent as one comma-delimited string."""
        if not isinstance(value, str):
            value = ",".join(str(item) for item in value)
        return cls(name, ParameterType.ENUM, value)

    @classmethod
    def date(cls, name: str, value: datetime.datetime | datetime.date) -> Parameter:
        # Dune date parameters have second precision: YYYY-MM-DD HH:MM:SS
        if not isinstance(value, datetime.datetime):
            value = datetime.datetime.combine(value, datetime.time())
        elif value.tzinfo is not None:
            value = value.astimezone(datetime.UTC)
        return cls(name, ParameterType.DATE, value.strftime("%Y-%m-%d %H:%M:%S"))


def parameters_to_wire(parameters: Sequence[Parameter] | None) -> dict[str, str]:
    return {p.key: p.value for p in parameters or ()}


class ExecutionStatus(enum.Enum):
    PENDING = "QUERY_STATE_PENDING"
    EXECUTING = "QUERY_STATE_EXECUTING"
    COMPLETE = "QUERY_STATE_COMPLETED"
    CANCELLED = "QUERY_STATE_CANCELLED"
    FAILED = "QUERY_STATE_FAILED"

    @classmethod
    def from_wire(cls, state: str) -> ExecutionStatus:
        try:
            return cls(state)
        except ValueError:
            raise ValueError(f"unknown execution state {state!r}") from None

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETE, ExecutionStatus.CANCELLED, ExecutionStatus.FAILED)

    @property
    def rank(self) -> int:
        if self.is_terminal:
            return 2
        return 1 if self is ExecutionStatus.EXECUTING else 0


@dataclass
class ExecutionHandle:
    """One remote run, created by a successful submission.

    ``state`` is the last status observed for this execution. It only moves
    forward: once terminal, later observations are ignored.
    """

    execution_id: str
    query_id: int | None = None
    state: ExecutionStatus | None = None

    def observe(self, status: ExecutionStatus) -> ExecutionStatus:
        current = self.state
        if current is not None and current.is_terminal and status is not current:
            logger.warning(
                "ignoring state %s for execution_id=%s, already terminal in %s",
                status.name,
                self.execution_id,
                current.name,
            )
        elif current is None or status.rank >= current.rank:
            self.state = status
        return self.state  # type: ignore[return-value]


@dataclass(frozen=True)
class ExecutionTimes:
    submitted_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None
    execution_started_at: datetime.datetime | None = None
    execution_ended_at: datetime.datetime | None = None
    cancelled_at: datetime.datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ExecutionTimes:
        submitted = payload.get("submitted_at")
        return cls(
            submitted_at=datetime_from_str(submitted) if submitted is not None else None,
            expires_at=optional_datetime_from_str(payload.get("expires_at")),
            execution_started_at=optional_datetime_from_str(payload.get("execution_started_at")),
            execution_ended_at=optional_datetime_from_str(payload.get("execution_ended_at")),
            cancelled_at=optional_datetime_from_str(payload.get("cancelled_at")),
        )


@dataclass(frozen=True)
class ResultMetadata:
    column_names: list[str] = field(default_factory=list)
    column_types: list[str] | None = None
    row_count: int | None = None
    result_set_bytes: int | None = None
    total_row_count: int | None = None
    total_result_set_bytes: int | None = None
    datapoint_count: int | None = None
    pending_time_millis: int | None = None
    execution_time_millis: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ResultMetadata:
        known = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in payload.items() if k in known}
        values["column_names"] = list(values.get("column_names") or [])
        return cls(**values)


@dataclass(frozen=True)
class StatusResponse:
    execution_id: str
    query_id: int | None
    state: ExecutionStatus
    is_execution_finished: bool | None = None
    times: ExecutionTimes = field(default_factory=ExecutionTimes)
    queue_position: int | None = None
    result_metadata: ResultMetadata | None = None
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> StatusResponse:
        metadata = payload.get("result_metadata")
        return cls(
            execution_id=payload["execution_id"],
            query_id=payload.get("query_id"),
            state=ExecutionStatus.from_wire(payload["state"]),
            is_execution_finished=payload.get("is_execution_finished"),
            times=ExecutionTimes.from_payload(payload),
            queue_position=payload.get("queue_position"),
            result_metadata=ResultMetadata.from_payload(metadata) if metadata else None,
            error=_error_message(payload.get("error")),
        )


def _error_message(error: Any) -> str | None:
    # failed executions report either a string or {"type": ..., "message": ...}
    if error is None or isinstance(error, str):
        return error
    if isinstance(error, Mapping):
        return str(error.get("message") or error.get("type") or error)
    return str(error)


@dataclass
class ResultSet(Generic[T]):
    """Typed rows of one completed execution, owned by the caller."""

    execution_id: str
    query_id: int | None
    rows: list[T]
    metadata: ResultMetadata | None = None
    state: ExecutionStatus = ExecutionStatus.COMPLETE
    times: ExecutionTimes = field(default_factory=ExecutionTimes)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[T]:
        return iter(self.rows)

    def get_rows(self) -> list[T]:
        return self.rows

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def execution_time_millis(self) -> int | None:
        return self.metadata.execution_time_millis if self.metadata else None

    def to_polars(self) -> pl.DataFrame:
        import polars as pl

        records = [_as_record(row) for row in self.rows]
        if not records:
            columns = self.metadata.column_names if self.metadata else []
            return pl.DataFrame(schema=columns)
        return pl.DataFrame(records)


def _as_record(row: Any) -> Mapping[str, Any]:
    if isinstance(row, Mapping):
        return row
    if dataclasses.is_dataclass(row) and not isinstance(row, type):
        return dataclasses.asdict(row)
    return vars(row)


@dataclass(frozen=True)
class PollPolicy:
    """How ``await_completion`` schedules status checks.

    Delays start at ``interval`` seconds and are multiplied by ``backoff``
    after every non-terminal poll, capped at ``max_interval``. The schedule
    has no jitter, so a given policy always produces the same delays.
    """

    interval: float = 1.0
    max_attempts: int | None = None
    timeout_seconds: float | None = None
    backoff: float = 1.0
    max_interval: float | None = None

    def __post_init__(self) -> None:
        if self.interval < 0:
            raise ValueError("interval must be >= 0")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.timeout_seconds is not None and self.timeout_seconds < 0:
            raise ValueError("timeout_seconds must be >= 0")

    def delays(self) -> Iterator[float]:
        delay = self.interval
        while True:
            if self.max_interval is not None:
                delay = min(delay, self.max_interval)
            yield delay
            delay *= self.backoff
