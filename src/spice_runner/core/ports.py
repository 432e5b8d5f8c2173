from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(Protocol):
    """Port for authenticated HTTP exchanges with the Dune API.

    Implementations raise :class:`~spice_runner.core.errors.RequestError`
    when no response could be obtained (connection failure, timeout).
    """

    def send(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> TransportResponse:
        ...


class AsyncTransport(Protocol):
    """Asyncio flavour of :class:`Transport`."""

    async def send(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> TransportResponse:
        ...
