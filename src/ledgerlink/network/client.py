"""
ledgerlink — Network client surface (abstract I/O layer)

The ledger network itself (member services, peers, consensus) is reached
through an external client library. This module pins down the small surface
the lifecycle controller relies on so the rest of the stack stays testable:

  - NetworkClient: enroll / look up identities, hold the registrar
  - NetworkIdentity: enrolled principal; deploys, invokes, queries
  - TxEvents: per-request emitter firing "submitted", "complete", "error"

No sockets here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Tuple, runtime_checkable


EVENT_SUBMITTED = "submitted"
EVENT_COMPLETE = "complete"
EVENT_ERROR = "error"

TERMINAL_EVENTS = (EVENT_COMPLETE, EVENT_ERROR)


# ---------------------------------------------------------------------
# Requests / results
# ---------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class RegistrationRequest:
    enrollment_id: str
    affiliation: str
    account: str


@dataclass(frozen=True, slots=True)
class DeployRequest:
    """
    fcn/args are passed to the chaincode's init. args[0] carries a fresh
    nonce so every deployment gets its own chaincode id.
    """
    fcn: str
    args: Tuple[str, ...]
    chaincode_path: str


@dataclass(frozen=True, slots=True)
class TxRequest:
    chaincode_id: str
    fcn: str
    args: Tuple[str, ...]
    attrs: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TxResult:
    """
    Payload of a "complete" event.

    - result: raw bytes returned by the chaincode (queries)
    - chaincode_id: set on deploy completion
    """
    result: bytes = b""
    chaincode_id: str = ""
    tx_id: str = ""


# ---------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------

@runtime_checkable
class TxEvents(Protocol):
    def on(self, event: str, handler: Callable[[Any], None]) -> None: ...


@runtime_checkable
class NetworkIdentity(Protocol):
    @property
    def name(self) -> str: ...

    def is_enrolled(self) -> bool: ...

    def invoke(self, request: TxRequest) -> TxEvents: ...
    def query(self, request: TxRequest) -> TxEvents: ...
    def deploy(self, request: DeployRequest) -> TxEvents: ...

    # Only meaningful on the registrar.
    def register_and_enroll(self, request: RegistrationRequest) -> None: ...


@runtime_checkable
class NetworkClient(Protocol):
    """
    enroll() and get_identity() raise on failure (unknown identity, rejected
    secret). They are blocking calls; transaction traffic is event driven.
    """

    def enroll(self, enrollment_id: str, secret: str) -> NetworkIdentity: ...
    def get_identity(self, name: str) -> NetworkIdentity: ...

    def set_registrar(self, identity: NetworkIdentity) -> None: ...
    def get_registrar(self) -> Optional[NetworkIdentity]: ...


def result_bytes(payload: Any) -> bytes:
    """Extract raw chaincode output from a "complete" payload."""
    if isinstance(payload, TxResult):
        raw: Any = payload.result
    elif isinstance(payload, dict):
        raw = payload.get("result", b"")
    else:
        raw = getattr(payload, "result", payload)
    if raw is None:
        return b""
    if isinstance(raw, (bytes, bytearray)):
        return bytes(raw)
    return str(raw).encode("utf-8")


def deployed_chaincode_id(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("chaincode_id") or payload.get("chaincodeID") or "").strip()
    return str(getattr(payload, "chaincode_id", "") or "").strip()
