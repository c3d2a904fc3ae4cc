# src/ledgerlink/identity/admin.py
from __future__ import annotations

import logging
import threading
from typing import Optional

from ledgerlink.config import LinkConfig
from ledgerlink.errors import ConfigurationError, EnrollmentError, NotReadyError
from ledgerlink.log import log_event
from ledgerlink.metrics import inc_counter
from ledgerlink.network.client import NetworkClient, NetworkIdentity


log = logging.getLogger("ledgerlink.identity")


class RegistrarSlot:
    """Holds the process registrar. Set once, read many."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._registrar: Optional[NetworkIdentity] = None
        self.boot_lock = threading.Lock()

    @property
    def registrar(self) -> Optional[NetworkIdentity]:
        return self._registrar

    def install(self, identity: NetworkIdentity) -> bool:
        """Returns False (and keeps the existing one) if a registrar is already set."""
        with self._lock:
            if self._registrar is not None:
                return False
            self._registrar = identity
            return True

    def require(self) -> NetworkIdentity:
        reg = self._registrar
        if reg is None:
            raise NotReadyError("no_registrar", "admin identity has not been bootstrapped", {})
        return reg


class AdminBootstrapper:
    """Enrolls the configured admin identity and makes it the registrar.

    The admin is pre-registered on the network with a one-time secret, so a
    failed enrollment is fatal and never retried.
    """

    def __init__(self, *, cfg: LinkConfig, network: NetworkClient, slot: RegistrarSlot) -> None:
        self._cfg = cfg
        self._network = network
        self._slot = slot

    def bootstrap(self) -> NetworkIdentity:
        # Held across check, enroll and install: the secret only works once.
        with self._slot.boot_lock:
            existing = self._slot.registrar
            if existing is not None:
                log_event(log, "admin_bootstrap_repeated", level=logging.WARNING, admin=existing.name)
                return existing
            return self._enroll_admin()

    def _enroll_admin(self) -> NetworkIdentity:
        admin = self._cfg.user(self._cfg.admin_username)
        if admin is None:
            raise ConfigurationError(
                "missing_admin",
                "admin identity is not in the configured user list",
                {"admin_username": self._cfg.admin_username},
            )

        try:
            identity = self._network.enroll(admin.username, admin.enroll_secret)
        except Exception as e:
            inc_counter("admin_enroll_failed_total")
            log_event(log, "admin_enroll_failed", level=logging.ERROR, admin=admin.username, error=str(e))
            raise EnrollmentError("admin_enroll_failed", str(e), {"admin": admin.username}) from e

        self._slot.install(identity)
        self._network.set_registrar(identity)
        inc_counter("admin_enrolled_total")
        log_event(log, "admin_enrolled", admin=admin.username)
        return identity
