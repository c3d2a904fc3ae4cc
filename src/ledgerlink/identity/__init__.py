# src/ledgerlink/identity/__init__.py
"""
ledgerlink — Identity package

  - admin: enroll the administrative identity and install it as registrar
  - users: idempotent register+enroll of configured application identities
"""

from __future__ import annotations

__all__ = [
    "admin",
    "users",
]
