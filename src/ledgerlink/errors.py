from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class LinkError(Exception):
    """Canonical error type for ledger lifecycle failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class ConfigurationError(LinkError):
    """Missing or invalid required configuration. Fatal at startup."""


class EnrollmentError(LinkError):
    """The identity service rejected an enrollment."""


class RegistrationError(LinkError):
    """Per-identity register+enroll failure. Reported and skipped."""


class DeploymentError(LinkError):
    """A chaincode deployment failed. Never retried implicitly."""


class TransactionError(LinkError):
    """Failure delivered to the caller of a transaction submission."""


class UnknownIdentityError(TransactionError):
    pass


class NotEnrolledError(TransactionError):
    pass


class NotReadyError(TransactionError):
    """No deployed chaincode (or no registrar) yet."""
