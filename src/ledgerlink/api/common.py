from __future__ import annotations

import os
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Any

from fastapi import Request

from ledgerlink.api.errors import ApiError, from_link_error
from ledgerlink.errors import LinkError
from ledgerlink.runtime import LedgerLink


def _env_int(name: str, default: int) -> int:
    try:
        v = str(os.environ.get(name, "") or "").strip()
        return int(v) if v else int(default)
    except Exception:
        return int(default)


def _runtime(request: Request) -> LedgerLink:
    rt = getattr(request.app.state, "runtime", None)
    if rt is None:
        raise ApiError.unavailable("not_ready", "runtime not attached to app.state", {})
    return rt


def _await(fut: Future, *, timeout_env: str, default_ms: int) -> Any:
    """Block the worker thread on a lifecycle future, mapping failures to ApiError."""
    timeout_s = max(1, _env_int(timeout_env, default_ms)) / 1000.0
    try:
        return fut.result(timeout=timeout_s)
    except FutureTimeout:
        raise ApiError.timeout("timeout", "no terminal event before deadline", {"timeout_ms": int(timeout_s * 1000)})
    except LinkError as e:
        raise from_link_error(e)
