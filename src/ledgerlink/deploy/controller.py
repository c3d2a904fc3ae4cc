# src/ledgerlink/deploy/controller.py
from __future__ import annotations

import enum
import logging
import secrets
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional

from ledgerlink.config import LinkConfig
from ledgerlink.errors import ConfigurationError, DeploymentError, NotReadyError
from ledgerlink.events import bind_terminal
from ledgerlink.identity.admin import RegistrarSlot
from ledgerlink.log import log_event
from ledgerlink.metrics import inc_counter, set_gauge
from ledgerlink.network.client import DeployRequest, deployed_chaincode_id
from ledgerlink.store import DeploymentStore


log = logging.getLogger("ledgerlink.deploy")

# hook(chaincode_id, fresh) where fresh is False when an existing id was reused.
DeployHook = Callable[[str, bool], None]


class DeployState(str, enum.Enum):
    UNKNOWN = "unknown"
    NOT_DEPLOYED = "not_deployed"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"


@dataclass(frozen=True, slots=True)
class DeploymentRecord:
    state: DeployState
    chaincode_id: Optional[str]
    chaincode_path: str
    auto_redeploy: bool
    nonce: str = ""
    deployed_ts_ms: int = 0


def new_deploy_nonce() -> str:
    """Fresh per attempt, so redeploying unchanged code still yields a new id."""
    return f"{time.time_ns():x}-{secrets.token_hex(16)}"


def _clean_id(v: Optional[str]) -> Optional[str]:
    s = str(v or "").strip()
    return s or None


class DeploymentController:
    """Owns the process DeploymentRecord and decides when to (re)deploy.

    All record mutation goes through _transition(). While a deployment is in
    flight, further deploy() calls return the in-flight future; a forced call
    received meanwhile is queued and runs once the current attempt finishes
    (several queued calls collapse into one).
    """

    def __init__(
        self,
        *,
        cfg: LinkConfig,
        slot: RegistrarSlot,
        store: DeploymentStore,
        nonce_fn: Callable[[], str] = new_deploy_nonce,
    ) -> None:
        self._cfg = cfg
        self._slot = slot
        self._store = store
        self._nonce_fn = nonce_fn

        self._lock = threading.Lock()
        self._record = DeploymentRecord(
            state=DeployState.UNKNOWN,
            chaincode_id=None,
            chaincode_path=cfg.chaincode.global_path,
            auto_redeploy=cfg.auto_redeploy,
        )
        self._inflight: Optional[Future] = None
        self._queued_force = False
        self._hooks: List[DeployHook] = []

    # ---- read side ----

    @property
    def record(self) -> DeploymentRecord:
        return self._record

    @property
    def state(self) -> DeployState:
        return self._record.state

    @property
    def code_id(self) -> str:
        cid = self._record.chaincode_id
        if not cid:
            raise NotReadyError("not_deployed", "chaincode has not been deployed yet", {"state": self.state.value})
        return cid

    def add_hook(self, hook: DeployHook) -> None:
        self._hooks.append(hook)

    # ---- state ----

    def _transition(self, state: DeployState, **changes: Any) -> DeploymentRecord:
        # caller holds self._lock
        prev = self._record
        self._record = replace(prev, state=state, **changes)
        set_gauge("deployed", 1 if state == DeployState.DEPLOYED else 0)
        if prev.state != state:
            log_event(log, "deploy_state", state=state.value, prev=prev.state.value, chaincode_id=self._record.chaincode_id)
        return self._record

    def _recall(self) -> Optional[str]:
        try:
            return _clean_id(self._store.load_latest_id())
        except Exception as e:
            log_event(log, "deploy_recall_failed", level=logging.WARNING, error=str(e))
            return None

    # ---- deploy ----

    def deploy(self, force_redeploy: bool = False) -> "Future[str]":
        fut: Future = Future()
        reused: Optional[str] = None
        prev_id: Optional[str] = None
        nonce = ""

        with self._lock:
            if self._record.state == DeployState.DEPLOYING and self._inflight is not None:
                if force_redeploy:
                    self._queued_force = True
                log_event(log, "deploy_coalesced", queued_force=bool(self._queued_force))
                return self._inflight

            pinned = self._cfg.pinned_code_id
            if self._cfg.managed and pinned is None:
                fut.set_exception(
                    ConfigurationError("missing_deployed_name", "managed mode requires chaincode.deployed_name", {})
                )
                return fut

            if pinned is not None:
                # A configured id is never redeployed, forced or not.
                reused = pinned
                self._transition(DeployState.DEPLOYED, chaincode_id=pinned, deployed_ts_ms=int(time.time() * 1000))
            elif self._record.state == DeployState.DEPLOYED and self._record.chaincode_id and not force_redeploy:
                reused = self._record.chaincode_id
            else:
                log_event(log, "deploy_check", force=bool(force_redeploy))
                recalled = self._recall()
                if recalled is not None and not force_redeploy:
                    reused = recalled
                    self._transition(DeployState.DEPLOYED, chaincode_id=recalled, deployed_ts_ms=int(time.time() * 1000))
                else:
                    if self._record.state == DeployState.UNKNOWN:
                        self._transition(DeployState.NOT_DEPLOYED)
                    prev_id = self._record.chaincode_id if self._record.state == DeployState.DEPLOYED else None
                    nonce = self._nonce_fn()
                    self._transition(DeployState.DEPLOYING, nonce=nonce)
                    self._inflight = fut

        if reused is not None:
            inc_counter("deploy_reused_total")
            log_event(log, "deploy_reused", chaincode_id=reused, managed=self._cfg.managed)
            self._run_hooks(reused, fresh=False)
            fut.set_result(reused)
            return fut

        self._start_deploy(fut, nonce=nonce, prev_id=prev_id)
        return fut

    def _start_deploy(self, fut: Future, *, nonce: str, prev_id: Optional[str]) -> None:
        req = DeployRequest(fcn="init", args=(nonce,), chaincode_path=self._cfg.chaincode.global_path)
        inc_counter("deploy_requests_total")
        log_event(log, "deploy_submit", chaincode_path=req.chaincode_path, nonce=nonce)

        try:
            registrar = self._slot.require()
            events = registrar.deploy(req)
        except Exception as e:
            self._fail(fut, prev_id, e)
            return

        bind_terminal(
            events,
            on_complete=lambda payload: self._complete(fut, prev_id, payload),
            on_error=lambda err: self._fail(fut, prev_id, err),
            on_submitted=lambda payload: log_event(log, "deploy_submitted", nonce=nonce),
            logger=log,
            label="deploy",
            nonce=nonce,
        )

    def _complete(self, fut: Future, prev_id: Optional[str], payload: Any) -> None:
        code_id = deployed_chaincode_id(payload)
        if not code_id:
            self._fail(fut, prev_id, DeploymentError("empty_chaincode_id", "deployment returned no chaincode id", {}))
            return

        try:
            self._store.save(code_id, chaincode_path=self._cfg.chaincode.global_path)
        except Exception as e:
            # Still deployed on the network; only the restart shortcut is lost.
            log_event(log, "deploy_persist_failed", level=logging.ERROR, chaincode_id=code_id, error=str(e))

        with self._lock:
            self._transition(DeployState.DEPLOYED, chaincode_id=code_id, deployed_ts_ms=int(time.time() * 1000))
            self._inflight = None
            queued, self._queued_force = self._queued_force, False

        inc_counter("deploy_succeeded_total")
        log_event(log, "deploy_complete", chaincode_id=code_id)
        self._run_hooks(code_id, fresh=True)
        fut.set_result(code_id)

        if queued:
            self.deploy(force_redeploy=True)

    def _fail(self, fut: Future, prev_id: Optional[str], err: Any) -> None:
        if isinstance(err, DeploymentError):
            exc = err
        else:
            exc = DeploymentError("deploy_failed", str(err), {"chaincode_path": self._cfg.chaincode.global_path})

        with self._lock:
            if prev_id is not None:
                # The previous deployment stays active.
                self._transition(DeployState.DEPLOYED, chaincode_id=prev_id)
            else:
                self._transition(DeployState.NOT_DEPLOYED, chaincode_id=None)
            self._inflight = None
            queued, self._queued_force = self._queued_force, False

        inc_counter("deploy_failed_total")
        log_event(log, "deploy_failed", level=logging.ERROR, error=str(exc), active_chaincode_id=prev_id)
        fut.set_exception(exc)

        if queued:
            self.deploy(force_redeploy=True)

    def _run_hooks(self, code_id: str, *, fresh: bool) -> None:
        for hook in list(self._hooks):
            try:
                hook(code_id, fresh)
            except Exception as e:
                log_event(
                    log,
                    "deploy_hook_failed",
                    level=logging.ERROR,
                    hook=getattr(hook, "__name__", repr(hook)),
                    error=str(e),
                )
