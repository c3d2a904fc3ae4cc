# src/ledgerlink/seed.py
from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import List, Sequence

from ledgerlink.config import SeedInvoke
from ledgerlink.log import log_event
from ledgerlink.tx.coordinator import TransactionCoordinator


log = logging.getLogger("ledgerlink.seed")


class SeedLoader:
    """Places the configured initial data on the ledger after deployment.

    Every entry is an invoke submitted independently; failures are logged and
    never affect the deployment that triggered the seeding.
    """

    def __init__(self, *, coordinator: TransactionCoordinator, entries: Sequence[SeedInvoke]) -> None:
        self._coordinator = coordinator
        self._entries = tuple(entries)
        self.last_batch: List[Future] = []

    def on_deployed(self, chaincode_id: str, fresh: bool) -> None:
        self.last_batch = self.invoke_all()

    def invoke_all(self) -> List[Future]:
        if not self._entries:
            return []
        log_event(log, "seed_start", count=len(self._entries))
        out: List[Future] = []
        for entry in self._entries:
            fut = self._coordinator.invoke(entry.fcn, entry.user, list(entry.args))
            fut.add_done_callback(lambda f, e=entry: self._log_result(e, f))
            out.append(fut)
        return out

    @staticmethod
    def _log_result(entry: SeedInvoke, fut: Future) -> None:
        err = fut.exception()
        if err is not None:
            log_event(log, "seed_failed", level=logging.ERROR, fcn=entry.fcn, user=entry.user, error=str(err))
        else:
            log_event(log, "seed_ok", fcn=entry.fcn, user=entry.user)
