# src/ledgerlink/tx/coordinator.py
from __future__ import annotations

import enum
import json
import logging
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple

from ledgerlink.errors import (
    NotEnrolledError,
    NotReadyError,
    TransactionError,
    UnknownIdentityError,
)
from ledgerlink.events import bind_terminal
from ledgerlink.log import log_event
from ledgerlink.metrics import inc_counter
from ledgerlink.network.client import NetworkClient, TxRequest, result_bytes


log = logging.getLogger("ledgerlink.tx")

# Attribute the executed chaincode may read to learn the caller's name.
CALLER_ATTRS: Tuple[str, ...] = ("userName",)


class TxKind(str, enum.Enum):
    INVOKE = "invoke"
    QUERY = "query"


@dataclass(frozen=True, slots=True)
class TransactionRequest:
    kind: TxKind
    function_name: str
    identity_name: str
    args: Tuple[str, ...] = ()


class TransactionCoordinator:
    """Submits invoke/query requests on behalf of enrolled identities.

    submit() never raises for request-level failures: every outcome, including
    unknown/unenrolled identities, arrives through the returned future, which
    resolves exactly once.
    """

    def __init__(self, *, network: NetworkClient, code_id: Callable[[], str]) -> None:
        self._network = network
        self._code_id = code_id

    def invoke(self, fcn: str, identity_name: str, args: Sequence[Any] = (), **kw: Any) -> Future:
        return self.submit(TxKind.INVOKE, fcn, identity_name, args, **kw)

    def query(self, fcn: str, identity_name: str, args: Sequence[Any] = (), **kw: Any) -> Future:
        return self.submit(TxKind.QUERY, fcn, identity_name, args, **kw)

    def submit(
        self,
        kind: TxKind | str,
        fcn: str,
        identity_name: str,
        args: Sequence[Any] = (),
        *,
        on_submitted: Optional[Callable[[Any], None]] = None,
    ) -> Future:
        fut: Future = Future()
        try:
            req = TransactionRequest(
                kind=TxKind(kind),
                function_name=str(fcn),
                identity_name=str(identity_name),
                args=tuple(str(a) for a in args),
            )
            self._submit(req, fut, on_submitted)
        except TransactionError as e:
            self._reject(fut, e, kind=str(getattr(kind, "value", kind)), fcn=fcn, user=identity_name)
        except Exception as e:
            self._reject(
                fut,
                TransactionError("submit_failed", str(e), {"fcn": fcn, "user": identity_name}),
                kind=str(getattr(kind, "value", kind)),
                fcn=fcn,
                user=identity_name,
            )
        return fut

    def _submit(self, req: TransactionRequest, fut: Future, on_submitted: Optional[Callable[[Any], None]]) -> None:
        try:
            chaincode_id = self._code_id()
        except NotReadyError:
            raise
        except Exception as e:
            raise NotReadyError("not_deployed", str(e), {}) from e

        try:
            identity = self._network.get_identity(req.identity_name)
        except Exception as e:
            raise UnknownIdentityError("unknown_identity", str(e), {"user": req.identity_name}) from e

        if not identity.is_enrolled():
            raise NotEnrolledError(
                "not_enrolled",
                "user is not yet registered and enrolled",
                {"user": req.identity_name},
            )

        # The chaincode identifies the invoking party by a trailing argument.
        tx = TxRequest(
            chaincode_id=chaincode_id,
            fcn=req.function_name,
            args=req.args + (req.identity_name,),
            attrs=CALLER_ATTRS,
        )

        inc_counter(f"tx_{req.kind.value}_total")
        fields = {"kind": req.kind.value, "fcn": req.function_name, "user": req.identity_name}
        events = identity.query(tx) if req.kind == TxKind.QUERY else identity.invoke(tx)

        def _submitted(payload: Any) -> None:
            log_event(log, "tx_submitted", ack=str(payload), **fields)
            if on_submitted is not None:
                try:
                    on_submitted(payload)
                except Exception as e:
                    log_event(log, "tx_progress_callback_failed", level=logging.WARNING, error=str(e), **fields)

        bind_terminal(
            events,
            on_complete=lambda payload: self._complete(req, fut, payload),
            on_error=lambda err: self._reject(
                fut,
                err if isinstance(err, TransactionError) else TransactionError("tx_failed", str(err), dict(fields)),
                **fields,
            ),
            on_submitted=_submitted,
            logger=log,
            label="tx",
            **fields,
        )

    def _complete(self, req: TransactionRequest, fut: Future, payload: Any) -> None:
        fields = {"kind": req.kind.value, "fcn": req.function_name, "user": req.identity_name}
        if req.kind != TxKind.QUERY:
            log_event(log, "tx_completed", **fields)
            fut.set_result(payload)
            return

        raw = result_bytes(payload)
        try:
            value = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            self._reject(fut, TransactionError("bad_query_result", str(e), {"raw": raw[:256].decode("utf-8", "replace")}), **fields)
            return

        log_event(log, "tx_completed", **fields)
        fut.set_result(value)

    @staticmethod
    def _reject(fut: Future, err: TransactionError, **fields: Any) -> None:
        inc_counter("tx_failed_total")
        log_event(log, "tx_failed", level=logging.ERROR, code=err.code, reason=err.reason, **fields)
        fut.set_exception(err)
