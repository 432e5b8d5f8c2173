from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .core.models import PollPolicy

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.dune.com/api/v1"


@dataclass(frozen=True)
class DuneConfig:
    api_key: str
    api_url: str = DEFAULT_API_URL

    def __repr__(self) -> str:
        return f"DuneConfig(api_key='***', api_url={self.api_url!r})"


@dataclass(frozen=True)
class HttpClientConfig:
    timeout_seconds: float = 30.0
    # retries apply to GET requests only; POST (submit, cancel) is never replayed
    max_retries: int = 0
    backoff_seconds: float = 0.5
    max_backoff_seconds: float = 5.0
    retry_statuses: tuple[int, ...] = (429, 502, 503)


@dataclass(frozen=True)
class Config:
    dune: DuneConfig
    http: HttpClientConfig = field(default_factory=HttpClientConfig)
    poll: PollPolicy = field(default_factory=PollPolicy)

    @classmethod
    def from_env(cls, *, api_key: str | None = None) -> Config:
        load_dotenv()
        api_key = api_key or os.getenv("DUNE_API_KEY")
        if not api_key:
            raise ValueError("DUNE_API_KEY environment variable is required")

        timeout = float(os.getenv("SPICE_HTTP_TIMEOUT", "30"))
        max_attempts = os.getenv("SPICE_POLL_MAX_ATTEMPTS")
        poll_timeout = os.getenv("SPICE_POLL_TIMEOUT")
        return cls(
            dune=DuneConfig(
                api_key=api_key,
                api_url=os.getenv("DUNE_API_URL", DEFAULT_API_URL).rstrip("/"),
            ),
            http=HttpClientConfig(
                timeout_seconds=timeout,
                max_retries=int(os.getenv("SPICE_HTTP_MAX_RETRIES", "0")),
            ),
            poll=PollPolicy(
                interval=float(os.getenv("SPICE_POLL_INTERVAL", "1.0")),
                max_attempts=int(max_attempts) if max_attempts else None,
                timeout_seconds=float(poll_timeout) if poll_timeout else None,
            ),
        )


def load_dotenv(candidates: list[Path] | None = None) -> None:
    """Best-effort: fill missing environment variables from a local ``.env``.

    Skipped when ``DUNE_API_KEY`` is already set or ``SPICE_RUNNER_SKIP_DOTENV``
    is present. Existing variables are never overwritten.
    """
    if os.environ.get("SPICE_RUNNER_SKIP_DOTENV") or os.environ.get("DUNE_API_KEY"):
        return
    if candidates is None:
        candidates = [Path.cwd() / ".env", Path.home() / ".env"]
    for candidate in candidates:
        if not candidate.is_file():
            continue
        try:
            with candidate.open(encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    k, v = line.split("=", 1)
                    k = k.strip()
                    v = v.strip().strip('"').strip("'")
                    if k and v and k not in os.environ:
                        os.environ[k] = v
        except OSError as exc:
            logger.debug("could not read %s: %s", candidate, exc)
