from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from ..config import HttpClientConfig

logger = logging.getLogger(__name__)

__all__ = ["HttpClient", "HttpClientConfig"]


class HttpClient:
    """Thin wrapper over a shared ``requests.Session``.

    GET requests answered with a retryable status (429/502/503 by default)
    are replayed up to ``config.max_retries`` times with a doubling delay.
    Other methods are sent exactly once.
    """

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or HttpClientConfig()
        self.session = session or requests.Session()
        self._sleep = sleep

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.config.timeout_seconds)
        if method.upper() != "GET":
            return self.session.request(method, url, **kwargs)

        attempts = 0
        backoff = self.config.backoff_seconds
        while True:
            response = self.session.request(method, url, **kwargs)
            if response.status_code not in self.config.retry_statuses or attempts >= self.config.max_retries:
                return response
            attempts += 1
            logger.debug(
                "GET %s returned %s, retry %d/%d in %.2fs",
                url,
                response.status_code,
                attempts,
                self.config.max_retries,
                backoff,
            )
            self._sleep(backoff)
            backoff = min(self.config.max_backoff_seconds, backoff * 2)

    def close(self) -> None:
        self.session.close()
