"""Ledger record models: one EventRecord per ledger line."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

ORIGIN_PLUGIN = "plugin"


class Phase(str, Enum):
    DONE = "done"


class AgentRef(BaseModel):
    id: str
    displayName: str


class SessionRef(BaseModel):
    key: str | None = None
    id: str | None = None
    label: str | None = None
    channel: str | None = None


class EventRecord(BaseModel):
    timestamp: str  # ISO-8601 UTC, second precision
    origin: str = ORIGIN_PLUGIN
    agent: AgentRef
    session: SessionRef = Field(default_factory=SessionRef)
    tool: str
    phase: Phase | None = None
    correlationKey: str | None = None
    summary: str = ""
    details: dict[str, Any] = Field(default_factory=dict)

    def to_line_dict(self) -> dict:
        """Wire shape: enum values as strings, unset optionals omitted."""
        return self.model_dump(mode="json", exclude_none=True)
