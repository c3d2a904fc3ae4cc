# src/ledgerlink/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ledgerlink.errors import ConfigurationError

Json = Dict[str, Any]

MODE_LOCAL = "local"
MODE_MANAGED = "managed"
_ALLOWED_MODES = {MODE_LOCAL, MODE_MANAGED}

DEFAULT_ADMIN_USERNAME = "WebAppAdmin"
DEFAULT_AFFILIATION = "institution_a"
DEFAULT_ACCOUNT = "group1"


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _as_dict(x: Any) -> Json:
    return x if isinstance(x, dict) else {}


def _as_list(x: Any) -> list:
    return x if isinstance(x, list) else []


@dataclass(frozen=True)
class UserConfig:
    username: str
    enroll_secret: str = ""
    affiliation: str = DEFAULT_AFFILIATION
    account: str = DEFAULT_ACCOUNT


@dataclass(frozen=True)
class SeedInvoke:
    """One invoke placed on the ledger after every deployment."""

    fcn: str
    user: str
    args: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NetworkConfig:
    ca_url: str = "localhost:7054"
    peer_host: str = "localhost"
    peer_port: int = 7051
    tls_cert_path: str = "blockchain/us.blockchain.ibm.com.cert"
    kv_store_path: str = ""


@dataclass(frozen=True)
class ChaincodeConfig:
    local_path: str = "chaincode"
    global_path: str = ""
    artifact: str = "chaincode.go"
    deployed_name: str = ""
    auto_redeploy: bool = False


@dataclass(frozen=True)
class LinkConfig:
    mode: str = MODE_LOCAL
    network: NetworkConfig = field(default_factory=NetworkConfig)
    chaincode: ChaincodeConfig = field(default_factory=ChaincodeConfig)

    # Every identity known to the network, admin included.
    users: Tuple[UserConfig, ...] = ()
    # Application identities that must be registered + enrolled at boot.
    app_users: Tuple[UserConfig, ...] = ()
    admin_username: str = DEFAULT_ADMIN_USERNAME

    seed: Tuple[SeedInvoke, ...] = ()

    build_root: str = ""
    db_path: str = "./data/ledgerlink.db"

    watch_interval_ms: int = 1_000
    redeploy_debounce_ms: int = 5_000

    log_level: str = "INFO"

    @property
    def managed(self) -> bool:
        return self.mode == MODE_MANAGED

    @property
    def pinned_code_id(self) -> Optional[str]:
        """Configured chaincode id; when set, deployment is never attempted."""
        return self.chaincode.deployed_name.strip() or None

    @property
    def auto_redeploy(self) -> bool:
        return bool(self.chaincode.auto_redeploy) and not self.managed and self.pinned_code_id is None

    def canonical_code_dir(self) -> Path:
        """Build location the network deploys from: <build_root>/src/<global_path>."""
        return Path(self.build_root) / "src" / self.chaincode.global_path

    def user(self, username: str) -> Optional[UserConfig]:
        for u in self.users:
            if u.username == username:
                return u
        return None


@dataclass(frozen=True)
class NetworkEndpoints:
    member_services_url: str
    peer_url: str
    tls_cert_path: Optional[str]
    kv_store_path: str


def network_endpoints(cfg: LinkConfig) -> NetworkEndpoints:
    """Resolve member-services / peer URLs for the configured mode.

    Managed networks are reached over TLS (grpcs) with the operator-provided
    certificate; local networks use plaintext grpc.
    """
    n = cfg.network
    peer = f"{n.peer_host}:{int(n.peer_port)}"
    if cfg.managed:
        return NetworkEndpoints(
            member_services_url=f"grpcs://{n.ca_url}",
            peer_url=f"grpcs://{peer}",
            tls_cert_path=n.tls_cert_path,
            kv_store_path=n.kv_store_path or "blockchain/data/managedKeyValStore",
        )
    return NetworkEndpoints(
        member_services_url=f"grpc://{n.ca_url}",
        peer_url=f"grpc://{peer}",
        tls_cert_path=None,
        kv_store_path=n.kv_store_path or "/tmp/keyValStore",
    )


def validate_link_config(cfg: LinkConfig) -> None:
    """Fail-fast validation. Raises ConfigurationError."""
    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ConfigurationError("bad_mode", f"mode must be one of {sorted(_ALLOWED_MODES)}", {"mode": cfg.mode})

    if mode == MODE_MANAGED and not cfg.chaincode.deployed_name.strip():
        raise ConfigurationError(
            "missing_deployed_name",
            "managed mode requires chaincode.deployed_name",
            {},
        )

    if mode == MODE_LOCAL and not cfg.chaincode.global_path.strip() and not cfg.chaincode.deployed_name.strip():
        raise ConfigurationError("missing_global_path", "chaincode.global_path must be set to deploy", {})

    if int(cfg.watch_interval_ms) < 50:
        raise ConfigurationError("bad_watch_interval", "watch_interval_ms must be >= 50", {"value": cfg.watch_interval_ms})

    if int(cfg.redeploy_debounce_ms) < 0:
        raise ConfigurationError(
            "bad_debounce", "redeploy_debounce_ms must be >= 0", {"value": cfg.redeploy_debounce_ms}
        )

    seen = set()
    for u in cfg.users:
        if not u.username.strip():
            raise ConfigurationError("bad_user", "user entries need a username", {})
        if u.username in seen:
            raise ConfigurationError("duplicate_user", "duplicate username", {"username": u.username})
        seen.add(u.username)


def _user_from_raw(raw: Json) -> UserConfig:
    username = _as_str(raw.get("username") or raw.get("enrollId"), "")
    return UserConfig(
        username=username,
        enroll_secret=_as_str(raw.get("secret") or raw.get("enrollSecret"), ""),
        affiliation=_as_str(raw.get("affiliation"), DEFAULT_AFFILIATION),
        account=_as_str(raw.get("account"), DEFAULT_ACCOUNT),
    )


def _ca_url(raw_ca: Any, default: str) -> str:
    # Either {"url": ...} or a mapping of named CAs; the first one wins.
    ca = _as_dict(raw_ca)
    if "url" in ca:
        return _as_str(ca.get("url"), default)
    for v in ca.values():
        if isinstance(v, dict) and v.get("url"):
            return _as_str(v.get("url"), default)
    return default


def link_config_from_dict(raw: Json) -> LinkConfig:
    if not isinstance(raw, dict):
        raise ConfigurationError("bad_config", "config must be a mapping", {})

    d = LinkConfig()
    net_raw = _as_dict(raw.get("network"))
    peers = _as_list(net_raw.get("peers"))
    peer0 = _as_dict(peers[0]) if peers else {}

    network = NetworkConfig(
        ca_url=_ca_url(net_raw.get("ca"), d.network.ca_url),
        peer_host=_as_str(peer0.get("discovery_host"), d.network.peer_host),
        peer_port=_as_int(peer0.get("discovery_port"), d.network.peer_port),
        tls_cert_path=_as_str(net_raw.get("tls_cert_path"), d.network.tls_cert_path),
        kv_store_path=_as_str(net_raw.get("kv_store_path"), d.network.kv_store_path),
    )

    users = tuple(_user_from_raw(_as_dict(u)) for u in _as_list(net_raw.get("users")))
    by_name = {u.username: u for u in users}
    app_users = []
    for u in _as_list(net_raw.get("app_users")):
        au = _user_from_raw(_as_dict(u))
        # app_users may only name the user; fill the rest from network.users
        known = by_name.get(au.username)
        app_users.append(known if known is not None and not _as_dict(u).get("affiliation") else au)

    cc_raw = _as_dict(raw.get("chaincode"))
    chaincode = ChaincodeConfig(
        local_path=_as_str(cc_raw.get("local_path"), d.chaincode.local_path),
        global_path=_as_str(cc_raw.get("global_path"), d.chaincode.global_path),
        artifact=_as_str(cc_raw.get("artifact"), d.chaincode.artifact),
        deployed_name=_as_str(cc_raw.get("deployed_name"), ""),
        auto_redeploy=_as_bool(cc_raw.get("auto_redeploy"), d.chaincode.auto_redeploy),
    )

    seed = tuple(
        SeedInvoke(
            fcn=_as_str(_as_dict(s).get("fcn"), ""),
            user=_as_str(_as_dict(s).get("user"), ""),
            args=tuple(str(a) for a in _as_list(_as_dict(s).get("args"))),
        )
        for s in _as_list(raw.get("seed"))
    )

    return LinkConfig(
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        network=network,
        chaincode=chaincode,
        users=users,
        app_users=tuple(app_users),
        admin_username=_as_str(raw.get("admin_username"), d.admin_username),
        seed=seed,
        build_root=_as_str(raw.get("build_root"), d.build_root),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        watch_interval_ms=_as_int(raw.get("watch_interval_ms"), d.watch_interval_ms),
        redeploy_debounce_ms=_as_int(raw.get("redeploy_debounce_ms"), d.redeploy_debounce_ms),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )


def read_link_config_file(path: str) -> LinkConfig:
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError("missing_config_file", "config file not found", {"path": str(path)})

    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text) or {}
    else:
        raw = json.loads(text)
    return link_config_from_dict(raw)


def apply_env_overrides(cfg: LinkConfig) -> LinkConfig:
    """Environment wins over file values for the process-level switches."""
    mode = os.environ.get("LEDGERLINK_MODE")
    if mode:
        cfg = replace(cfg, mode=mode.strip().lower())

    build_root = os.environ.get("LEDGERLINK_BUILD_ROOT")
    if build_root:
        cfg = replace(cfg, build_root=build_root)
    elif not cfg.build_root and os.environ.get("GOPATH"):
        cfg = replace(cfg, build_root=os.environ["GOPATH"])

    db_path = os.environ.get("LEDGERLINK_DB_PATH")
    if db_path:
        cfg = replace(cfg, db_path=db_path)

    if os.environ.get("LEDGERLINK_AUTO_REDEPLOY") is not None:
        cfg = replace(
            cfg,
            chaincode=replace(
                cfg.chaincode,
                auto_redeploy=_as_bool(os.environ.get("LEDGERLINK_AUTO_REDEPLOY"), cfg.chaincode.auto_redeploy),
            ),
        )

    deployed_name = (os.environ.get("LEDGERLINK_DEPLOYED_NAME") or "").strip()
    if deployed_name:
        cfg = replace(cfg, chaincode=replace(cfg.chaincode, deployed_name=deployed_name))

    level = os.environ.get("LEDGERLINK_LOG_LEVEL")
    if level:
        cfg = replace(cfg, log_level=level.strip().upper())

    return cfg


def load_link_config(*, config_path: Optional[str] = None) -> LinkConfig:
    p = config_path or os.environ.get("LEDGERLINK_CONFIG_PATH")
    cfg = read_link_config_file(p) if p else LinkConfig()
    cfg = apply_env_overrides(cfg)
    validate_link_config(cfg)
    return cfg
