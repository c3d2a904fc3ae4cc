# src/ledgerlink/events.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from ledgerlink.log import log_event
from ledgerlink.network.client import EVENT_COMPLETE, EVENT_ERROR, EVENT_SUBMITTED, TxEvents


class TerminalLatch:
    """First terminal event wins; every later one is rejected."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fired: Optional[str] = None

    @property
    def fired(self) -> Optional[str]:
        return self._fired

    def claim(self, event: str) -> bool:
        with self._lock:
            if self._fired is not None:
                return False
            self._fired = event
            return True


def bind_terminal(
    events: TxEvents,
    *,
    on_complete: Callable[[Any], None],
    on_error: Callable[[Any], None],
    on_submitted: Optional[Callable[[Any], None]] = None,
    logger: logging.Logger,
    label: str,
    **fields: Any,
) -> TerminalLatch:
    """Attach handlers so exactly one of on_complete/on_error ever runs.

    "submitted" is informational and may be ignored. A second terminal event
    from a faulty channel is logged and dropped.
    """
    latch = TerminalLatch()

    def _terminal(kind: str, handler: Callable[[Any], None]) -> Callable[[Any], None]:
        def _fire(payload: Any) -> None:
            if latch.claim(kind):
                handler(payload)
                return
            log_event(
                logger,
                f"{label}_late_terminal",
                level=logging.WARNING,
                terminal=kind,
                first=latch.fired,
                payload=str(payload),
                **fields,
            )

        return _fire

    if on_submitted is not None:
        events.on(EVENT_SUBMITTED, on_submitted)
    events.on(EVENT_COMPLETE, _terminal(EVENT_COMPLETE, on_complete))
    events.on(EVENT_ERROR, _terminal(EVENT_ERROR, on_error))
    return latch
