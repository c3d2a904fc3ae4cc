from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "ledgerlink" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from ledgerlink.config import ChaincodeConfig, LinkConfig, UserConfig  # noqa: E402
from ledgerlink.identity.admin import AdminBootstrapper, RegistrarSlot  # noqa: E402
from ledgerlink.network.memory import InMemoryNetwork  # noqa: E402
from ledgerlink.runtime import memory_network_from_config  # noqa: E402
from ledgerlink.store import DeploymentStore, SqliteDB  # noqa: E402


@pytest.fixture
def link_cfg(tmp_path: Path) -> LinkConfig:
    local = tmp_path / "chaincode"
    local.mkdir()
    (local / "chaincode.go").write_text("package main\n", encoding="utf-8")
    return LinkConfig(
        mode="local",
        chaincode=ChaincodeConfig(local_path=str(local), global_path="github.com/acme/cc"),
        users=(
            UserConfig(username="WebAppAdmin", enroll_secret="adminpw"),
            UserConfig(username="alice", enroll_secret="alicepw"),
            UserConfig(username="bob", enroll_secret="bobpw"),
        ),
        app_users=(
            UserConfig(username="alice", enroll_secret="alicepw"),
            UserConfig(username="bob", enroll_secret="bobpw"),
        ),
        build_root=str(tmp_path / "gopath"),
        db_path=str(tmp_path / "data" / "ledgerlink.db"),
    )


@pytest.fixture
def net(link_cfg: LinkConfig) -> InMemoryNetwork:
    return memory_network_from_config(link_cfg)


@pytest.fixture
def store(link_cfg: LinkConfig) -> DeploymentStore:
    return DeploymentStore(db=SqliteDB(path=link_cfg.db_path))


@pytest.fixture
def slot(link_cfg: LinkConfig, net: InMemoryNetwork) -> RegistrarSlot:
    """Registrar slot with the admin already bootstrapped."""
    s = RegistrarSlot()
    AdminBootstrapper(cfg=link_cfg, network=net, slot=s).bootstrap()
    return s
