from __future__ import annotations

import hashlib
import json
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ledgerlink.network.client import (
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_SUBMITTED,
    DeployRequest,
    RegistrationRequest,
    TxRequest,
    TxResult,
)

Json = Dict[str, Any]


class _Emitter:
    """
    Event emitter for one request.

    Handlers attached after an event already fired still receive it, so a
    caller can subscribe after invoke() returns without racing delivery.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)
        self._fired: List[Tuple[str, Any]] = []

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        with self._lock:
            self._handlers[event].append(handler)
            replay = [p for (e, p) in self._fired if e == event]
        for payload in replay:
            handler(payload)

    def emit(self, event: str, payload: Any) -> None:
        with self._lock:
            self._fired.append((event, payload))
            handlers = list(self._handlers.get(event, ()))
        for h in handlers:
            h(payload)


class KeyValueChaincode:
    """
    Minimal chaincode used by the in-memory network.

    Functions (the invoking identity is always the trailing argument):
      - put(key, value): value stored as JSON if it parses, else as a string
      - delete(key)
      - get(key) [query]: JSON-encoded value, "null" if missing
    """

    def __init__(self) -> None:
        self.state: Json = {}
        self.init_args: Tuple[str, ...] = ()

    def init(self, args: Tuple[str, ...]) -> None:
        self.init_args = tuple(args)

    def invoke(self, fcn: str, args: Tuple[str, ...]) -> bytes:
        if fcn == "put" and len(args) >= 2:
            try:
                self.state[args[0]] = json.loads(args[1])
            except ValueError:
                self.state[args[0]] = args[1]
            return b""
        if fcn == "delete" and len(args) >= 1:
            self.state.pop(args[0], None)
            return b""
        raise ValueError(f"unknown invoke function: {fcn}")

    def query(self, fcn: str, args: Tuple[str, ...]) -> bytes:
        if fcn == "get" and len(args) >= 1:
            return json.dumps(self.state.get(args[0])).encode("utf-8")
        raise ValueError(f"unknown query function: {fcn}")


@dataclass
class _Member:
    name: str
    secret: str
    enrolled: bool = False
    secret_used: bool = False


@dataclass
class NetworkLog:
    """What the in-memory network was asked to do."""

    enrollments: List[str] = field(default_factory=list)
    registrations: List[RegistrationRequest] = field(default_factory=list)
    deploys: List[DeployRequest] = field(default_factory=list)
    txs: List[Tuple[str, str, TxRequest]] = field(default_factory=list)


class MemoryIdentity:
    def __init__(self, *, network: "InMemoryNetwork", member: _Member) -> None:
        self._network = network
        self._member = member

    @property
    def name(self) -> str:
        return self._member.name

    def is_enrolled(self) -> bool:
        return bool(self._member.enrolled)

    def invoke(self, request: TxRequest) -> _Emitter:
        return self._network._submit_tx(self.name, "invoke", request)

    def query(self, request: TxRequest) -> _Emitter:
        return self._network._submit_tx(self.name, "query", request)

    def deploy(self, request: DeployRequest) -> _Emitter:
        return self._network._submit_deploy(self.name, request)

    def register_and_enroll(self, request: RegistrationRequest) -> None:
        self._network._register_and_enroll(self.name, request)


class InMemoryNetwork:
    """
    In-process ledger network used for development and unit tests.

    - Does not open sockets
    - One-time enrollment secrets (a secret can be exchanged once)
    - Deploys KeyValueChaincode instances (or chaincode_factory())

    Event delivery:
      - autopump=True: events fire synchronously as requests are submitted
      - autopump=False: events queue until pump() is called, which lets tests
        hold a deployment or transaction in flight
    """

    def __init__(
        self,
        *,
        autopump: bool = True,
        chaincode_factory: Callable[[], KeyValueChaincode] = KeyValueChaincode,
    ) -> None:
        self.autopump = bool(autopump)
        self.chaincode_factory = chaincode_factory
        self.log = NetworkLog()
        self.chaincodes: Dict[str, KeyValueChaincode] = {}

        self._lock = threading.RLock()
        self._members: Dict[str, _Member] = {}
        self._registrar: Optional[MemoryIdentity] = None
        self._pending: List[Tuple[_Emitter, str, Any]] = []
        self._failures: Dict[str, List[str]] = defaultdict(list)
        self._double_terminal = False

    # ---- population / failure injection (tests, dev harness) ----

    def add_member(self, name: str, secret: str = "", *, enrolled: bool = False) -> None:
        with self._lock:
            self._members[name] = _Member(name=name, secret=secret, enrolled=enrolled)

    def fail_next(self, op: str, reason: str = "injected failure") -> None:
        """Make the next `op` fail. op in {"enroll", "register", "deploy", "invoke", "query"}."""
        with self._lock:
            self._failures[op].append(reason)

    def emit_both_terminals(self, enabled: bool = True) -> None:
        """Faulty channel: completed requests also fire "error" afterwards."""
        self._double_terminal = bool(enabled)

    def pump(self) -> int:
        """Deliver queued events in submission order. Returns how many fired."""
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        for emitter, event, payload in pending:
            emitter.emit(event, payload)
        return len(pending)

    # ---- NetworkClient ----

    def enroll(self, enrollment_id: str, secret: str) -> MemoryIdentity:
        with self._lock:
            self.log.enrollments.append(enrollment_id)
            reason = self._take_failure("enroll")
            if reason:
                raise RuntimeError(reason)
            m = self._members.get(enrollment_id)
            if m is None:
                raise KeyError(f"unknown identity: {enrollment_id}")
            if m.secret_used or m.secret != secret:
                raise PermissionError(f"enrollment rejected for {enrollment_id}")
            m.secret_used = True
            m.enrolled = True
            return MemoryIdentity(network=self, member=m)

    def get_identity(self, name: str) -> MemoryIdentity:
        with self._lock:
            m = self._members.get(name)
            if m is None:
                raise KeyError(f"unknown identity: {name}")
            return MemoryIdentity(network=self, member=m)

    def set_registrar(self, identity: MemoryIdentity) -> None:
        with self._lock:
            self._registrar = identity

    def get_registrar(self) -> Optional[MemoryIdentity]:
        return self._registrar

    # ---- internals ----

    def _take_failure(self, op: str) -> Optional[str]:
        q = self._failures.get(op)
        if q:
            return q.pop(0)
        return None

    def _schedule(self, emitter: _Emitter, events: List[Tuple[str, Any]]) -> None:
        if self._double_terminal and events and events[-1][0] == EVENT_COMPLETE:
            events = events + [(EVENT_ERROR, RuntimeError("late error from faulty channel"))]
        if self.autopump:
            for event, payload in events:
                emitter.emit(event, payload)
            return
        with self._lock:
            for event, payload in events:
                self._pending.append((emitter, event, payload))

    def _register_and_enroll(self, caller: str, request: RegistrationRequest) -> None:
        with self._lock:
            if self._registrar is None or self._registrar.name != caller:
                raise PermissionError(f"{caller} is not the registrar")
            self.log.registrations.append(request)
            reason = self._take_failure("register")
            if reason:
                raise RuntimeError(reason)
            m = self._members.get(request.enrollment_id)
            if m is None:
                m = _Member(name=request.enrollment_id, secret="")
                self._members[m.name] = m
            m.enrolled = True
            m.secret_used = True

    def _submit_deploy(self, caller: str, request: DeployRequest) -> _Emitter:
        emitter = _Emitter()
        with self._lock:
            self.log.deploys.append(request)
            reason = self._take_failure("deploy")
        if reason:
            self._schedule(emitter, [(EVENT_ERROR, RuntimeError(reason))])
            return emitter

        with self._lock:
            digest = hashlib.sha256()
            digest.update(request.chaincode_path.encode("utf-8"))
            for a in request.args:
                digest.update(b"\x00" + a.encode("utf-8"))
            code_id = digest.hexdigest()

            cc = self.chaincode_factory()
            cc.init(request.args)
            self.chaincodes[code_id] = cc

        self._schedule(
            emitter,
            [
                (EVENT_SUBMITTED, {"caller": caller, "chaincode_path": request.chaincode_path}),
                (EVENT_COMPLETE, TxResult(chaincode_id=code_id)),
            ],
        )
        return emitter

    def _submit_tx(self, caller: str, kind: str, request: TxRequest) -> _Emitter:
        emitter = _Emitter()
        with self._lock:
            self.log.txs.append((caller, kind, request))
            tx_id = hashlib.sha256(f"{caller}:{kind}:{len(self.log.txs)}".encode("utf-8")).hexdigest()
            reason = self._take_failure(kind)
            events: List[Tuple[str, Any]] = [(EVENT_SUBMITTED, {"tx_id": tx_id})]
            cc = self.chaincodes.get(request.chaincode_id)
            if reason:
                events.append((EVENT_ERROR, RuntimeError(reason)))
            elif cc is None:
                events.append((EVENT_ERROR, LookupError(f"chaincode not found: {request.chaincode_id}")))
            else:
                try:
                    fn = cc.query if kind == "query" else cc.invoke
                    out = fn(request.fcn, tuple(request.args))
                    events.append((EVENT_COMPLETE, TxResult(result=out, tx_id=tx_id)))
                except Exception as e:
                    events.append((EVENT_ERROR, e))

        self._schedule(emitter, events)
        return emitter
