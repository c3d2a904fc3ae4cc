# src/ledgerlink/identity/users.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from ledgerlink.config import UserConfig
from ledgerlink.errors import RegistrationError
from ledgerlink.identity.admin import RegistrarSlot
from ledgerlink.log import log_event
from ledgerlink.metrics import inc_counter
from ledgerlink.network.client import NetworkClient, RegistrationRequest


log = logging.getLogger("ledgerlink.identity")

STATUS_ALREADY_ENROLLED = "already_enrolled"
STATUS_REGISTERED = "registered"
STATUS_LOOKUP_FAILED = "lookup_failed"
STATUS_FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RegistrationOutcome:
    username: str
    status: str
    error: Optional[RegistrationError] = None

    @property
    def ok(self) -> bool:
        return self.status in {STATUS_ALREADY_ENROLLED, STATUS_REGISTERED}


class UserRegistrar:
    """Brings every configured application identity to "enrolled".

    Each identity is handled independently; one failure never stops the
    others. Enrollment state is checked before any registration attempt, so
    repeated runs converge without duplicate registrations.
    """

    def __init__(self, *, network: NetworkClient, slot: RegistrarSlot, max_workers: int = 4) -> None:
        self._network = network
        self._slot = slot
        self._max_workers = max(1, int(max_workers))

    def ensure_registered(self, users: Iterable[UserConfig]) -> Dict[str, RegistrationOutcome]:
        registrar = self._slot.require()
        todo = list(users)
        if not todo:
            return {}

        log_event(log, "register_users_start", count=len(todo))
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(todo))) as pool:
            outcomes = list(pool.map(lambda u: self._ensure_one(registrar, u), todo))
        return {o.username: o for o in outcomes}

    def _ensure_one(self, registrar, user: UserConfig) -> RegistrationOutcome:
        name = user.username
        try:
            identity = self._network.get_identity(name)
        except Exception as e:
            inc_counter("user_lookup_failed_total")
            log_event(log, "user_lookup_failed", level=logging.ERROR, user=name, error=str(e))
            return RegistrationOutcome(
                username=name,
                status=STATUS_LOOKUP_FAILED,
                error=RegistrationError("lookup_failed", str(e), {"user": name}),
            )

        if identity.is_enrolled():
            log_event(log, "user_already_enrolled", user=name)
            return RegistrationOutcome(username=name, status=STATUS_ALREADY_ENROLLED)

        req = RegistrationRequest(enrollment_id=name, affiliation=user.affiliation, account=user.account)
        try:
            registrar.register_and_enroll(req)
        except Exception as e:
            inc_counter("user_register_failed_total")
            log_event(log, "user_register_failed", level=logging.ERROR, user=name, error=str(e))
            return RegistrationOutcome(
                username=name,
                status=STATUS_FAILED,
                error=RegistrationError("register_failed", str(e), {"user": name}),
            )

        inc_counter("user_registered_total")
        log_event(log, "user_registered", user=name, affiliation=user.affiliation)
        return RegistrationOutcome(username=name, status=STATUS_REGISTERED)
