"""Entity models persisted in the store."""

from __future__ import annotations

import re
import time
from pathlib import PurePath
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def now() -> int:
    """Current Unix time in whole seconds."""

    return int(time.time())


def short_id() -> str:
    return uuid4().hex[:6]


_TITLE_CHARS = re.compile(r"[^a-z0-9]+")


def artifact_id(title: str, ts: int) -> str:
    """Derive ``<ts>_<sanitized title>`` for an artifact."""

    slug = _TITLE_CHARS.sub("_", title.lower()).strip("_")[:40].strip("_")
    return f"{ts}_{slug or 'artifact'}"


def file_type_of(file_path: str) -> str:
    suffix = PurePath(file_path).suffix
    return suffix[1:].lower() if suffix else "unknown"


class ActiveStatus(BaseModel):
    type: Literal["Active"] = "Active"


class WaitingStatus(BaseModel):
    """A session blocked on a human answer."""

    type: Literal["Waiting"] = "Waiting"
    question: str
    asked_at: int


class DoneStatus(BaseModel):
    type: Literal["Done"] = "Done"


SessionStatus = Annotated[
    Union[ActiveStatus, WaitingStatus, DoneStatus], Field(discriminator="type")
]


class Session(BaseModel):
    """One tracked unit of agent work."""

    id: str = Field(..., description="Opaque short identifier.")
    name: str | None = Field(default=None, description="Optional human label.")
    agent: str = Field(..., description="Free-text agent identifier.")
    cwd: str = Field(default="", description="Working directory of the agent.")
    status: SessionStatus = Field(default_factory=ActiveStatus)
    created: int
    last_activity: int = Field(default=0, description="Zero for records written before tracking.")

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def is_active(self) -> bool:
        return isinstance(self.status, ActiveStatus)

    @property
    def is_waiting(self) -> bool:
        return isinstance(self.status, WaitingStatus)

    @property
    def is_done(self) -> bool:
        return isinstance(self.status, DoneStatus)


class Hook(BaseModel):
    """Append-only lifecycle event of a session."""

    ts: int
    kind: str
    task: str
    meta: Any = None


class Msg(BaseModel):
    """One entry of a session's message log."""

    ts: int
    role: str
    content: str


class ChainLink(BaseModel):
    """One checkpoint in a named chain."""

    chain_name: str
    session_id: str
    slug: str
    content: str
    ts: int


MEMORY_KINDS = ("insight", "code", "message", "pattern")


class Memory(BaseModel):
    key: str
    session_id: str
    content: str
    kind: str = "insight"
    ts: int

    @field_validator("kind", mode="before")
    @classmethod
    def _default_kind(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "insight"
        return value


class Artifact(BaseModel):
    """Reference to an external file plus searchable metadata."""

    id: str
    file_path: str
    title: str
    description: str = ""
    session_id: str
    file_type: str
    ts: int


class SearchHit(BaseModel):
    type: Literal["chain_link", "artifact"]
    id: str = Field(..., description="Composite id: chain:<name>:<slug> or artifact:<id>.")
    title: str
    score: float
    preview: str


__all__ = [
    "ActiveStatus",
    "Artifact",
    "ChainLink",
    "DoneStatus",
    "Hook",
    "MEMORY_KINDS",
    "Memory",
    "Msg",
    "SearchHit",
    "Session",
    "SessionStatus",
    "WaitingStatus",
    "artifact_id",
    "file_type_of",
    "now",
    "short_id",
]
