# src/ledgerlink/network/__init__.py
"""
ledgerlink — Network package

  - client: collaborator protocols (NetworkClient, NetworkIdentity, TxEvents)
    plus request/result dataclasses
  - memory: in-process network for development and tests

Real network backends implement the client protocols; nothing above this
package depends on a concrete backend.
"""

from __future__ import annotations

__all__ = [
    "client",
    "memory",
]
