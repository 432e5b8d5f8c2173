from __future__ import annotations

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class QueryHistory:
    """Append-only JSONL log of query runs.

    One line per finished ``run_to_completion`` call, successful or not.
    Write failures are logged and never interrupt the run being recorded.
    """

    def __init__(self, history_path: Path):
        self.history_path = Path(history_path)
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls) -> QueryHistory | None:
        raw = os.getenv("SPICE_QUERY_HISTORY")
        if not raw or raw.strip().lower() in ("disabled", "off", "none", "0"):
            return None
        return cls(Path(raw).expanduser())

    def record(
        self,
        *,
        query_id: int,
        execution_id: str | None,
        state: str | None,
        rowcount: int | None = None,
        duration_ms: int | None = None,
        error: str | None = None,
        parameters: dict[str, str] | None = None,
    ) -> None:
        entry: dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "query_id": query_id,
            "execution_id": execution_id,
            "state": state,
            "rowcount": rowcount,
            "duration_ms": duration_ms,
        }
        if parameters:
            entry["parameters"] = parameters
        if error:
            entry["error"] = error
        line = json.dumps(entry, sort_keys=True)
        try:
            with self._lock:
                self.history_path.parent.mkdir(parents=True, exist_ok=True)
                with self.history_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            logger.warning("could not write query history to %s: %s", self.history_path, exc)
