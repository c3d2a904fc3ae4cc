# src/ledgerlink/deploy/watcher.py
from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from ledgerlink.config import LinkConfig
from ledgerlink.deploy.controller import DeploymentController
from ledgerlink.log import log_event
from ledgerlink.metrics import inc_counter


log = logging.getLogger("ledgerlink.watch")

Snapshot = Dict[str, Tuple[int, int]]


class Debouncer:
    """Only the first trigger in any window fires.

    Triggers inside the window are dropped, not deferred.
    """

    def __init__(self, *, window_ms: int = 5_000, clock: Callable[[], float] = time.monotonic) -> None:
        self._window_s = max(0, int(window_ms)) / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._until: Optional[float] = None

    def try_fire(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._until is not None and now < self._until:
                return False
            self._until = now + self._window_s
            return True


def _snapshot(root: Path) -> Snapshot:
    out: Snapshot = {}
    if root.is_file():
        st = root.stat()
        return {str(root): (st.st_mtime_ns, st.st_size)}
    if not root.is_dir():
        return out
    for dirpath, _dirs, files in os.walk(root):
        for name in files:
            p = os.path.join(dirpath, name)
            try:
                st = os.stat(p)
            except FileNotFoundError:
                continue
            out[p] = (st.st_mtime_ns, st.st_size)
    return out


class CodeWatcher:
    """Watches the local chaincode directory and redeploys on change.

    A change copies the artifact into the canonical build location and then
    forces a redeploy. Bursts of changes (editors often write several events
    per save) collapse into a single redeploy per debounce window.
    """

    def __init__(
        self,
        *,
        cfg: LinkConfig,
        controller: DeploymentController,
        debouncer: Optional[Debouncer] = None,
    ) -> None:
        self._cfg = cfg
        self._controller = controller
        self._debouncer = debouncer or Debouncer(window_ms=cfg.redeploy_debounce_ms)
        self._root = Path(cfg.chaincode.local_path)
        self._interval_s = max(50, int(cfg.watch_interval_ms)) / 1000.0

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._t: Optional[threading.Thread] = None
        self._last: Snapshot = {}

    @property
    def armed(self) -> bool:
        return self._t is not None and self._t.is_alive()

    def arm(self) -> bool:
        """Start watching. Idempotent: returns False if already armed."""
        with self._lock:
            if self._t is not None and self._t.is_alive():
                return False
            self._stop.clear()
            self.prime()
            self._t = threading.Thread(target=self._run, name="ledgerlink-code-watch", daemon=True)
            self._t.start()
        log_event(log, "watch_armed", path=str(self._root))
        return True

    def prime(self) -> None:
        """Record the current tree as the baseline for change detection."""
        self._last = _snapshot(self._root)

    def on_deployed(self, chaincode_id: str, fresh: bool) -> None:
        """Deployment hook: arm after the chaincode is live."""
        self.arm()

    def stop(self) -> None:
        self._stop.set()
        t = self._t
        if t is not None and t is not threading.current_thread():
            t.join(timeout=self._interval_s * 4)

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            try:
                self.poll_once()
            except Exception as e:
                log_event(log, "watch_poll_failed", level=logging.ERROR, error=str(e))

    def poll_once(self) -> Optional[Future]:
        current = _snapshot(self._root)
        if current == self._last:
            return None
        self._last = current
        return self.on_change("change")

    def on_change(self, event: str) -> Optional[Future]:
        if not self._debouncer.try_fire():
            inc_counter("watch_debounced_total")
            log_event(log, "watch_debounced", fs_event=event)
            return None

        try:
            dst = self.sync_artifact()
        except OSError as e:
            log_event(log, "watch_sync_failed", level=logging.ERROR, error=str(e))
            return None

        inc_counter("watch_redeploys_total")
        log_event(log, "watch_redeploy", fs_event=event, synced_to=str(dst))
        fut = self._controller.deploy(force_redeploy=True)
        fut.add_done_callback(self._log_result)
        return fut

    def sync_artifact(self) -> Path:
        """Copy the local artifact to <build_root>/src/<global_path>/<artifact>."""
        name = self._cfg.chaincode.artifact
        src = self._root / name if self._root.is_dir() else self._root
        dst_dir = self._cfg.canonical_code_dir()
        dst_dir.mkdir(parents=True, exist_ok=True)
        dst = dst_dir / name
        shutil.copy2(src, dst)
        log_event(log, "watch_synced", src=str(src), dst=str(dst))
        return dst

    @staticmethod
    def _log_result(fut: Future) -> None:
        err = fut.exception()
        if err is not None:
            log_event(log, "watch_redeploy_failed", level=logging.ERROR, error=str(err))
        else:
            log_event(log, "watch_redeploy_complete", chaincode_id=fut.result())
