from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from ledgerlink.api.common import _await, _runtime
from ledgerlink.api.schemas import TxBody
from ledgerlink.tx.coordinator import TxKind

router = APIRouter()

Json = Dict[str, Any]


def _submit(request: Request, kind: TxKind, body: TxBody) -> Any:
    rt = _runtime(request)
    fut = rt.coordinator.submit(kind, body.fcn, body.user, body.args)
    return _await(fut, timeout_env="LEDGERLINK_TX_TIMEOUT_MS", default_ms=30_000)


@router.post("/tx/invoke")
def tx_invoke(request: Request, body: TxBody) -> Json:
    """Submit a state-mutating transaction and wait for its terminal event."""
    result = _submit(request, TxKind.INVOKE, body)
    tx_id = str(getattr(result, "tx_id", "") or "")
    return {"ok": True, "fcn": body.fcn, "user": body.user, "tx_id": tx_id or None}


@router.post("/tx/query")
def tx_query(request: Request, body: TxBody) -> Json:
    """Run a read-only query; the chaincode's JSON output is returned as `result`."""
    result = _submit(request, TxKind.QUERY, body)
    return {"ok": True, "fcn": body.fcn, "user": body.user, "result": result}
