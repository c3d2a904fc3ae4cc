from __future__ import annotations

import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request, Response

from ledgerlink.api.common import _await, _runtime
from ledgerlink.api.schemas import DeployBody
from ledgerlink.deploy.controller import DeployState
from ledgerlink.metrics import format_prometheus, metrics_enabled

router = APIRouter()

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.get("/health")
def health(request: Request) -> Json:
    # must never crash
    rt = getattr(request.app.state, "runtime", None)
    state: Optional[str] = None
    if rt is not None:
        state = rt.controller.state.value
    return {
        "ok": True,
        "service": "ledgerlink",
        "version": "v1",
        "ts_ms": _now_ms(),
        "deploy_state": state,
        "ready": state == DeployState.DEPLOYED.value,
    }


@router.get("/status")
def status(request: Request) -> Json:
    rt = _runtime(request)
    out: Json = {"ok": True}
    out.update(rt.status())
    return out


@router.post("/deploy")
def deploy(request: Request, body: DeployBody) -> Json:
    """Deploy (or reuse) the chaincode. force=true always issues a new deployment."""
    rt = _runtime(request)
    fut = rt.controller.deploy(force_redeploy=body.force)
    code_id = _await(fut, timeout_env="LEDGERLINK_DEPLOY_TIMEOUT_MS", default_ms=120_000)
    return {"ok": True, "chaincode_id": code_id, "state": rt.controller.state.value}


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus-style metrics.

    Disabled by default. Enable with:
      LEDGERLINK_METRICS_ENABLED=1
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    return Response(content=format_prometheus(), media_type="text/plain")
