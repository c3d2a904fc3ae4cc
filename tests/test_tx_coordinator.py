from __future__ import annotations

import json
import threading
from concurrent.futures import wait
from typing import Any, Callable, Dict, List

import pytest

from ledgerlink.deploy.controller import DeploymentController
from ledgerlink.errors import NotEnrolledError, NotReadyError, TransactionError, UnknownIdentityError
from ledgerlink.identity.users import UserRegistrar
from ledgerlink.network.client import EVENT_COMPLETE, EVENT_ERROR, EVENT_SUBMITTED, TxResult
from ledgerlink.tx.coordinator import TransactionCoordinator, TxKind


@pytest.fixture
def deployed(link_cfg, net, slot, store) -> DeploymentController:
    ctl = DeploymentController(cfg=link_cfg, slot=slot, store=store)
    ctl.deploy().result(timeout=5)
    UserRegistrar(network=net, slot=slot).ensure_registered(link_cfg.app_users)
    return ctl


def _coordinator(net, ctl: DeploymentController) -> TransactionCoordinator:
    return TransactionCoordinator(network=net, code_id=lambda: ctl.code_id)


def test_invoke_then_query_round_trips_structured_value(net, deployed) -> None:
    tx = _coordinator(net, deployed)
    value = {"owner": "alice", "balance": 42, "tags": ["a", "b"], "nested": {"x": None}}

    tx.invoke("put", "alice", ["acct:1", json.dumps(value)]).result(timeout=5)
    got = tx.query("get", "alice", ["acct:1"]).result(timeout=5)

    assert got == value


def test_identity_name_is_appended_and_caller_list_untouched(net, deployed) -> None:
    tx = _coordinator(net, deployed)
    args = ["k", "1"]

    tx.invoke("put", "bob", args).result(timeout=5)

    assert args == ["k", "1"]
    caller, kind, req = net.log.txs[-1]
    assert (caller, kind) == ("bob", "invoke")
    assert req.args == ("k", "1", "bob")
    assert req.attrs == ("userName",)
    assert req.chaincode_id == deployed.code_id


def test_query_by_unenrolled_user_never_reaches_channel(link_cfg, net, slot, store) -> None:
    ctl = DeploymentController(cfg=link_cfg, slot=slot, store=store)
    ctl.deploy().result(timeout=5)
    # alice exists on the network but was never registered/enrolled
    tx = _coordinator(net, ctl)

    err = tx.submit(TxKind.QUERY, "balance", "alice", []).exception(timeout=5)

    assert isinstance(err, NotEnrolledError)
    assert net.log.txs == []


def test_unknown_identity(net, deployed) -> None:
    err = _coordinator(net, deployed).invoke("put", "mallory", ["k", "v"]).exception(timeout=5)
    assert isinstance(err, UnknownIdentityError)
    assert net.log.txs == []


def test_not_ready_before_deploy(link_cfg, net, slot, store) -> None:
    ctl = DeploymentController(cfg=link_cfg, slot=slot, store=store)
    err = _coordinator(net, ctl).query("get", "alice", ["k"]).exception(timeout=5)
    assert isinstance(err, NotReadyError)


def test_channel_error_is_delivered_as_transaction_error(net, deployed) -> None:
    net.fail_next("invoke", "endorsement failed")
    err = _coordinator(net, deployed).invoke("put", "alice", ["k", "v"]).exception(timeout=5)
    assert isinstance(err, TransactionError)
    assert "endorsement" in err.reason


def test_chaincode_error_is_delivered(net, deployed) -> None:
    err = _coordinator(net, deployed).invoke("transfer", "alice", []).exception(timeout=5)
    assert isinstance(err, TransactionError)


def test_unparseable_query_result_fails(net, deployed) -> None:
    cc = net.chaincodes[deployed.code_id]
    cc.query = lambda fcn, args: b"not-json"  # type: ignore[method-assign]

    err = _coordinator(net, deployed).query("get", "alice", ["k"]).exception(timeout=5)
    assert isinstance(err, TransactionError)
    assert err.code == "bad_query_result"


def test_faulty_channel_with_both_terminals_resolves_once(net, deployed) -> None:
    net.emit_both_terminals()
    fut = _coordinator(net, deployed).invoke("put", "alice", ["k", "v"])
    assert fut.exception(timeout=5) is None
    assert isinstance(fut.result(), TxResult)


def test_submitted_progress_callback(net, deployed) -> None:
    acks: List[Any] = []
    _coordinator(net, deployed).invoke("put", "alice", ["k", "v"], on_submitted=acks.append).result(timeout=5)
    assert len(acks) == 1


def test_pending_until_terminal_event(net, deployed) -> None:
    net.autopump = False
    fut = _coordinator(net, deployed).query("get", "alice", ["missing"])
    assert not fut.done()

    net.pump()
    assert fut.result(timeout=5) is None


class _ScriptedIdentity:
    """Identity whose channel fires whatever the test scripts, from other threads."""

    def __init__(self, script: List[str]) -> None:
        self.name = "carol"
        self._script = script

    def is_enrolled(self) -> bool:
        return True

    def _events(self):
        handlers: Dict[str, List[Callable[[Any], None]]] = {}
        ready = threading.Event()

        class _Ev:
            def on(self, event: str, handler: Callable[[Any], None]) -> None:
                handlers.setdefault(event, []).append(handler)
                if EVENT_ERROR in handlers:
                    ready.set()

        script = self._script

        def _fire() -> None:
            ready.wait(5)
            for event in script:
                payload: Any = TxResult(result=b"7") if event == EVENT_COMPLETE else RuntimeError(event)
                threads = [threading.Thread(target=h, args=(payload,)) for h in handlers.get(event, [])]
                for t in threads:
                    t.start()
                for t in threads:
                    t.join()

        threading.Thread(target=_fire, daemon=True).start()
        return _Ev()

    def query(self, request):
        return self._events()

    def invoke(self, request):
        return self._events()


class _ScriptedNetwork:
    def __init__(self, identity: _ScriptedIdentity) -> None:
        self._identity = identity

    def get_identity(self, name: str):
        return self._identity


@pytest.mark.parametrize(
    "script",
    [
        [EVENT_SUBMITTED, EVENT_COMPLETE],
        [EVENT_SUBMITTED, EVENT_ERROR],
        [EVENT_COMPLETE, EVENT_ERROR],
        [EVENT_ERROR, EVENT_COMPLETE],
        [EVENT_COMPLETE, EVENT_COMPLETE, EVENT_ERROR],
    ],
)
def test_exactly_one_terminal_outcome(script: List[str]) -> None:
    tx = TransactionCoordinator(network=_ScriptedNetwork(_ScriptedIdentity(script)), code_id=lambda: "cc")
    futs = [tx.query("get", "carol", ["k"]) for _ in range(5)]

    done, not_done = wait(futs, timeout=5)
    assert not not_done
    first_terminal = next(e for e in script if e != EVENT_SUBMITTED)
    for f in done:
        if first_terminal == EVENT_COMPLETE:
            assert f.exception() is None
            assert f.result() == 7
        else:
            assert isinstance(f.exception(), TransactionError)
