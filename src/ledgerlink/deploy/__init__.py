# src/ledgerlink/deploy/__init__.py
"""
ledgerlink — Deployment package

  - controller: DeploymentRecord state machine (reuse vs. deploy, persistence,
    in-flight guard, post-deployment hooks)
  - watcher: local chaincode watch with debounced forced redeploy
"""

from __future__ import annotations

__all__ = [
    "controller",
    "watcher",
]
