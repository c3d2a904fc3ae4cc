from __future__ import annotations

"""Pydantic request schemas for the HTTP API.

These exist only for HTTP input validation; the lifecycle components take
plain arguments.
"""

from typing import List

from pydantic import BaseModel, Field


class TxBody(BaseModel):
    fcn: str = Field(..., min_length=1, description="Chaincode function name")
    user: str = Field(..., min_length=1, description="Enrolled identity submitting the transaction")
    args: List[str] = Field(default_factory=list, description="Function arguments, in order")

    model_config = {"extra": "forbid"}


class DeployBody(BaseModel):
    force: bool = Field(default=False, description="Deploy even if a previous deployment can be reused")

    model_config = {"extra": "forbid"}
