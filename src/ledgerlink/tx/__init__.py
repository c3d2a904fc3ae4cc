# src/ledgerlink/tx/__init__.py
"""
ledgerlink — Transaction package

  - coordinator: invoke/query submission with exactly-once completion
"""

from __future__ import annotations

__all__ = [
    "coordinator",
]
