"""Request bodies accepted by the HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class NoteSubmission(BaseModel):
    text: Any = ""
    sessionKey: str | None = None


class HookEnvelope(BaseModel):
    event: dict[str, Any] = Field(default_factory=dict)
    ctx: dict[str, Any] = Field(default_factory=dict)
