from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

from ... import __version__

url_templates = {
    "execute": "/query/{query_id}/execute",
    "execution_status": "/execution/{execution_id}/status",
    "execution_results": "/execution/{execution_id}/results",
    "execution_cancel": "/execution/{execution_id}/cancel",
}


def get_api_key() -> str:
    api_key = os.getenv("DUNE_API_KEY")
    if not api_key:
        raise ValueError("DUNE_API_KEY environment variable is required")
    return api_key


def get_user_agent() -> str:
    return "spice-runner/" + __version__


def get_headers(*, api_key: str | None = None, json_body: bool = False) -> dict[str, str]:
    if api_key is None:
        api_key = get_api_key()
    headers = {"X-Dune-API-Key": api_key, "User-Agent": get_user_agent()}
    if json_body:
        headers["Content-Type"] = "application/json"
    return headers


def get_query_execute_path(query_id: int) -> str:
    return url_templates["execute"].format(query_id=query_id)


def get_execution_status_path(execution_id: str) -> str:
    return url_templates["execution_status"].format(execution_id=execution_id)


def get_execution_cancel_path(execution_id: str) -> str:
    return url_templates["execution_cancel"].format(execution_id=execution_id)


def get_execution_results_path(execution_id: str, params: Mapping[str, Any] | None = None) -> str:
    path = url_templates["execution_results"].format(execution_id=execution_id)
    query = {k: v for k, v in (params or {}).items() if v is not None}
    if query:
        path += "?" + urlencode(query)
    return path
