from __future__ import annotations

import pytest

from ledgerlink.config import UserConfig
from ledgerlink.errors import NotReadyError, RegistrationError
from ledgerlink.identity.admin import RegistrarSlot
from ledgerlink.identity.users import (
    STATUS_ALREADY_ENROLLED,
    STATUS_FAILED,
    STATUS_LOOKUP_FAILED,
    STATUS_REGISTERED,
    UserRegistrar,
)


def test_registers_unenrolled_users(link_cfg, net, slot) -> None:
    out = UserRegistrar(network=net, slot=slot).ensure_registered(link_cfg.app_users)

    assert {k: v.status for k, v in out.items()} == {"alice": STATUS_REGISTERED, "bob": STATUS_REGISTERED}
    assert all(o.ok for o in out.values())
    assert net.get_identity("alice").is_enrolled()
    assert net.get_identity("bob").is_enrolled()

    reqs = {r.enrollment_id: r for r in net.log.registrations}
    assert reqs["alice"].affiliation == "institution_a"
    assert reqs["alice"].account == "group1"


def test_second_run_is_idempotent(link_cfg, net, slot) -> None:
    registrar = UserRegistrar(network=net, slot=slot)
    registrar.ensure_registered(link_cfg.app_users)
    assert len(net.log.registrations) == 2

    again = registrar.ensure_registered(link_cfg.app_users)

    assert {o.status for o in again.values()} == {STATUS_ALREADY_ENROLLED}
    assert len(net.log.registrations) == 2


def test_unknown_user_does_not_stop_others(net, slot) -> None:
    users = [UserConfig(username="ghost"), UserConfig(username="alice")]

    out = UserRegistrar(network=net, slot=slot).ensure_registered(users)

    assert out["ghost"].status == STATUS_LOOKUP_FAILED
    assert isinstance(out["ghost"].error, RegistrationError)
    assert not out["ghost"].ok
    assert out["alice"].status == STATUS_REGISTERED


def test_register_failure_is_isolated(link_cfg, net, slot) -> None:
    net.fail_next("register", "ca rejected request")

    out = UserRegistrar(network=net, slot=slot, max_workers=1).ensure_registered(link_cfg.app_users)

    statuses = sorted(o.status for o in out.values())
    assert statuses == [STATUS_FAILED, STATUS_REGISTERED]
    failed = [o for o in out.values() if o.status == STATUS_FAILED][0]
    assert failed.error is not None and "rejected" in failed.error.reason


def test_requires_registrar(link_cfg, net) -> None:
    with pytest.raises(NotReadyError):
        UserRegistrar(network=net, slot=RegistrarSlot()).ensure_registered(link_cfg.app_users)


def test_empty_user_list(net, slot) -> None:
    assert UserRegistrar(network=net, slot=slot).ensure_registered([]) == {}
