"""Run saved Dune Analytics queries and decode their rows into your own types.

    from dataclasses import dataclass
    from spice_runner import DuneClient, f64_from_str, wire_field

    @dataclass
    class Row:
        symbol: str
        max_price: float = wire_field(f64_from_str)

    client = DuneClient.from_env()
    result = client.run_to_completion(971694, row_type=Row)
"""

__version__ = "0.1.0"

from .adapters.dune import AsyncDuneClient, DuneClient  # noqa: E402
from .config import Config, DuneConfig, HttpClientConfig  # noqa: E402
from .core import (  # noqa: E402
    DecodeError,
    DuneError,
    DuneRequestError,
    ExecutionFailedError,
    ExecutionHandle,
    ExecutionStateError,
    ExecutionStatus,
    Parameter,
    PollAbortedError,
    PollPolicy,
    PollTimeoutError,
    RequestError,
    ResultMetadata,
    ResultSet,
    StatusResponse,
    datetime_from_str,
    f64_from_str,
    materialize_rows,
    optional_datetime_from_str,
    optional_f64_from_str,
    wire_field,
)

__all__ = [
    "AsyncDuneClient",
    "Config",
    "DecodeError",
    "DuneClient",
    "DuneConfig",
    "DuneError",
    "DuneRequestError",
    "ExecutionFailedError",
    "ExecutionHandle",
    "ExecutionStateError",
    "ExecutionStatus",
    "HttpClientConfig",
    "Parameter",
    "PollAbortedError",
    "PollPolicy",
    "PollTimeoutError",
    "RequestError",
    "ResultMetadata",
    "ResultSet",
    "StatusResponse",
    "datetime_from_str",
    "f64_from_str",
    "materialize_rows",
    "optional_datetime_from_str",
    "optional_f64_from_str",
    "wire_field",
]
