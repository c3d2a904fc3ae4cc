from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ledgerlink.api.errors import ApiError, api_error_handler
from ledgerlink.api.request_log import RequestLogMiddleware
from ledgerlink.api.routes_ops import router as ops_router
from ledgerlink.api.routes_tx import router as tx_router
from ledgerlink.log import log_event
from ledgerlink.runtime import LedgerLink
from ledgerlink.runtime import build_runtime as _build_runtime


log = logging.getLogger("ledgerlink.http")


def build_runtime() -> LedgerLink:
    """Build the LedgerLink runtime for the API.

    This wrapper exists so tests can monkeypatch `ledgerlink.api.app.build_runtime`
    without reaching into runtime modules.
    """
    return _build_runtime()


def _autostart() -> bool:
    raw = (os.environ.get("LEDGERLINK_AUTOSTART") or "1").strip().lower()
    return raw not in {"0", "false", "no", "n", "off"}


def create_app(*, boot_runtime: bool = True, runtime: Optional[LedgerLink] = None) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): build the runtime from env/config and start it in the
        lifespan (admin bootstrap, user registration, deploy)
      - False: no runtime unless one is passed explicitly (tests)

    A bootstrap failure propagates out of the lifespan and aborts startup.
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        rt: Optional[LedgerLink] = getattr(app.state, "runtime", None)
        if rt is not None and not rt.started and _autostart():
            rt.start()
            log_event(log, "api_runtime_started", mode=rt.cfg.mode)
        yield
        if rt is not None:
            rt.stop()

    app = FastAPI(title="ledgerlink", lifespan=_lifespan)

    if runtime is not None:
        app.state.runtime = runtime
    elif boot_runtime:
        app.state.runtime = build_runtime()
    else:
        app.state.runtime = None

    app.add_middleware(RequestLogMiddleware)
    app.add_exception_handler(ApiError, api_error_handler)

    app.include_router(ops_router, prefix="/v1", tags=["ops"])
    app.include_router(tx_router, prefix="/v1", tags=["tx"])

    return app
