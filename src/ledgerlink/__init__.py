# src/ledgerlink/__init__.py
"""
ledgerlink — permissioned-ledger lifecycle controller

Admin bootstrap, application identity registration, chaincode deployment
(with persisted reuse and debounced auto-redeploy) and invoke/query
submission with exactly-once completion.
"""

from __future__ import annotations

__version__ = "0.1.0"
