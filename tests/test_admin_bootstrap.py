from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import List

import pytest

from ledgerlink.errors import ConfigurationError, EnrollmentError, NotReadyError
from ledgerlink.identity.admin import AdminBootstrapper, RegistrarSlot


def test_bootstrap_enrolls_admin_and_installs_registrar(link_cfg, net) -> None:
    slot = RegistrarSlot()
    reg = AdminBootstrapper(cfg=link_cfg, network=net, slot=slot).bootstrap()

    assert reg.name == "WebAppAdmin"
    assert reg.is_enrolled()
    assert slot.registrar is reg
    assert net.get_registrar() is reg
    assert net.log.enrollments == ["WebAppAdmin"]


def test_missing_admin_is_configuration_error(link_cfg, net) -> None:
    cfg = replace(link_cfg, admin_username="nobody")
    with pytest.raises(ConfigurationError):
        AdminBootstrapper(cfg=cfg, network=net, slot=RegistrarSlot()).bootstrap()
    assert net.log.enrollments == []


def test_rejected_enrollment_is_fatal_and_not_retried(link_cfg, net) -> None:
    net.fail_next("enroll", "member services unreachable")
    slot = RegistrarSlot()

    with pytest.raises(EnrollmentError) as ei:
        AdminBootstrapper(cfg=link_cfg, network=net, slot=slot).bootstrap()

    assert "unreachable" in ei.value.reason
    assert slot.registrar is None
    assert net.log.enrollments == ["WebAppAdmin"]
    with pytest.raises(NotReadyError):
        slot.require()


def test_second_bootstrap_reuses_registrar_without_enrolling(link_cfg, net) -> None:
    slot = RegistrarSlot()
    boot = AdminBootstrapper(cfg=link_cfg, network=net, slot=slot)

    first = boot.bootstrap()
    second = boot.bootstrap()

    # The one-time secret was spent by the first call; a second enroll would be rejected.
    assert second is first
    assert net.log.enrollments == ["WebAppAdmin"]


def test_registrar_slot_installs_once(link_cfg, net) -> None:
    slot = RegistrarSlot()
    a = net.get_identity("alice")
    b = net.get_identity("bob")

    assert slot.install(a) is True
    assert slot.install(b) is False
    assert slot.require() is a


def test_concurrent_bootstrap_enrolls_once(link_cfg, net, monkeypatch: pytest.MonkeyPatch) -> None:
    real_enroll = net.enroll

    def _slow_enroll(name: str, secret: str):
        time.sleep(0.05)
        return real_enroll(name, secret)

    monkeypatch.setattr(net, "enroll", _slow_enroll)
    slot = RegistrarSlot()
    start = threading.Barrier(4)
    results: List[object] = []
    errors: List[BaseException] = []

    def _boot() -> None:
        start.wait()
        try:
            results.append(AdminBootstrapper(cfg=link_cfg, network=net, slot=slot).bootstrap())
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=_boot) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert errors == []
    assert len(results) == 4
    assert all(r is slot.registrar for r in results)
    assert net.log.enrollments == ["WebAppAdmin"]
