# src/ledgerlink/store.py
from __future__ import annotations

import os
import random
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for ledgerlink persistence.

    Design goals:
      - single durable DB file
      - cross-thread safe by never sharing connections
      - bounded retry on writer-lock contention in write_tx()
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("LEDGERLINK_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0
        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=FULL;")
        busy_ms = max(0, _env_int("LEDGERLINK_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS deployment_record (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  chaincode_id TEXT NOT NULL,
                  chaincode_path TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except Exception:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise if the lock cannot be acquired within the deadline
        """
        deadline_ts = _now_ms() + max(250, _env_int("LEDGERLINK_SQLITE_WRITE_DEADLINE_MS", 10_000))
        base_sleep = 0.005
        max_sleep = 0.25

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.Error:
                    pass
                raise


@dataclass(frozen=True, slots=True)
class StoredDeployment:
    chaincode_id: str
    chaincode_path: str
    updated_ts_ms: int


class DeploymentStore:
    """Stable storage for the last successfully deployed chaincode id.

    The authoritative record is a single row; save() overwrites it inside one
    write transaction so a reader never sees a partial value.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def load(self) -> Optional[StoredDeployment]:
        with self._db.connection() as con:
            row = con.execute(
                "SELECT chaincode_id, chaincode_path, updated_ts_ms FROM deployment_record WHERE id=1;"
            ).fetchone()
        if row is None:
            return None
        cid = str(row["chaincode_id"] or "").strip()
        if not cid:
            return None
        return StoredDeployment(
            chaincode_id=cid,
            chaincode_path=str(row["chaincode_path"]),
            updated_ts_ms=int(row["updated_ts_ms"]),
        )

    def load_latest_id(self) -> Optional[str]:
        rec = self.load()
        return rec.chaincode_id if rec is not None else None

    def save(self, chaincode_id: str, *, chaincode_path: str = "") -> None:
        cid = str(chaincode_id or "").strip()
        if not cid:
            raise ValueError("refusing to persist an empty chaincode id")
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO deployment_record(id, chaincode_id, chaincode_path, updated_ts_ms)
                VALUES(1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  chaincode_id=excluded.chaincode_id,
                  chaincode_path=excluded.chaincode_path,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (cid, str(chaincode_path or ""), _now_ms()),
            )
