"""Dune API adapter: transports, wire handling and lifecycle clients."""

from . import urls  # re-export for callers needing low-level helpers
from .aio import AsyncDuneClient
from .client import DuneClient
from .transport import AiohttpTransport, RequestsTransport

__all__ = ["DuneClient", "AsyncDuneClient", "RequestsTransport", "AiohttpTransport", "urls"]
