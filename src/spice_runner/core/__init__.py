from .decode import (  # noqa: F401
    datetime_from_str,
    f64_from_str,
    optional_datetime_from_str,
    optional_f64_from_str,
)
from .errors import (  # noqa: F401
    DecodeError,
    DuneError,
    DuneRequestError,
    ExecutionFailedError,
    ExecutionStateError,
    PollAbortedError,
    PollTimeoutError,
    RequestError,
)
from .materialize import materialize_rows, wire_field  # noqa: F401
from .models import (  # noqa: F401
    ExecutionHandle,
    ExecutionStatus,
    Parameter,
    PollPolicy,
    ResultMetadata,
    ResultSet,
    StatusResponse,
)
