# src/ledgerlink/runtime.py
from __future__ import annotations

import logging
import os
from concurrent.futures import Future
from typing import Any, Dict, Optional

from ledgerlink.config import LinkConfig, load_link_config, network_endpoints
from ledgerlink.deploy.controller import DeploymentController
from ledgerlink.deploy.watcher import CodeWatcher
from ledgerlink.errors import ConfigurationError
from ledgerlink.identity.admin import AdminBootstrapper, RegistrarSlot
from ledgerlink.identity.users import RegistrationOutcome, UserRegistrar
from ledgerlink.log import log_event
from ledgerlink.network.client import NetworkClient
from ledgerlink.network.memory import InMemoryNetwork
from ledgerlink.seed import SeedLoader
from ledgerlink.store import DeploymentStore, SqliteDB
from ledgerlink.tx.coordinator import TransactionCoordinator


log = logging.getLogger("ledgerlink.runtime")


class LedgerLink:
    """Wires the lifecycle components together.

    Boot order:
      1) enroll the admin and install it as registrar (fatal on failure)
      2) register + enroll application users (local mode only)
      3) deploy or reuse the chaincode; hooks seed data and arm the watcher
    """

    def __init__(self, *, cfg: LinkConfig, network: NetworkClient, store: DeploymentStore) -> None:
        self.cfg = cfg
        self.network = network
        self.store = store

        self.slot = RegistrarSlot()
        self.admin = AdminBootstrapper(cfg=cfg, network=network, slot=self.slot)
        self.users = UserRegistrar(network=network, slot=self.slot)
        self.controller = DeploymentController(cfg=cfg, slot=self.slot, store=store)
        self.coordinator = TransactionCoordinator(network=network, code_id=lambda: self.controller.code_id)
        self.seeder = SeedLoader(coordinator=self.coordinator, entries=cfg.seed)
        self.watcher: Optional[CodeWatcher] = None

        self.controller.add_hook(self.seeder.on_deployed)
        if cfg.auto_redeploy:
            self.watcher = CodeWatcher(cfg=cfg, controller=self.controller)
            self.controller.add_hook(self.watcher.on_deployed)

        self.registration: Dict[str, RegistrationOutcome] = {}
        self.started = False

    def start(self, *, force_redeploy: bool = False) -> "Future[str]":
        ep = network_endpoints(self.cfg)
        log_event(
            log,
            "runtime_start",
            mode=self.cfg.mode,
            member_services_url=ep.member_services_url,
            peer_url=ep.peer_url,
            kv_store_path=ep.kv_store_path,
        )

        self.admin.bootstrap()

        if not self.cfg.managed:
            self.registration = self.users.ensure_registered(self.cfg.app_users)

        fut = self.controller.deploy(force_redeploy=force_redeploy)
        self.started = True
        return fut

    def stop(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
        log_event(log, "runtime_stop")

    def status(self) -> Dict[str, Any]:
        rec = self.controller.record
        return {
            "mode": self.cfg.mode,
            "started": bool(self.started),
            "registrar": self.slot.registrar.name if self.slot.registrar is not None else None,
            "deploy": {
                "state": rec.state.value,
                "chaincode_id": rec.chaincode_id,
                "chaincode_path": rec.chaincode_path,
                "auto_redeploy": rec.auto_redeploy,
            },
            "watcher_armed": bool(self.watcher is not None and self.watcher.armed),
            "users": {name: o.status for name, o in sorted(self.registration.items())},
        }


def memory_network_from_config(cfg: LinkConfig) -> InMemoryNetwork:
    """In-process network pre-populated with the configured identities."""
    net = InMemoryNetwork(autopump=True)
    for u in cfg.users:
        net.add_member(u.username, u.enroll_secret)
    for u in cfg.app_users:
        if cfg.user(u.username) is None:
            net.add_member(u.username, u.enroll_secret)
    return net


def build_network(cfg: LinkConfig) -> NetworkClient:
    backend = (os.environ.get("LEDGERLINK_NETWORK") or "memory").strip().lower()
    if backend == "memory":
        return memory_network_from_config(cfg)
    raise ConfigurationError("unsupported_network", "no client backend for LEDGERLINK_NETWORK", {"backend": backend})


def build_runtime(cfg: Optional[LinkConfig] = None, *, network: Optional[NetworkClient] = None) -> LedgerLink:
    c = cfg or load_link_config()
    store = DeploymentStore(db=SqliteDB(path=c.db_path))
    return LedgerLink(cfg=c, network=network or build_network(c), store=store)
