"""
Schemas for classifier verdicts and terminal outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Verdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    is_spam: bool = Field(..., alias="spam")
    reason: str | None = None
    confidence: float | None = Field(None, ge=0.0, le=1.0)

    @field_validator("reason")
    @classmethod
    def _clean_reason(cls, value):
        if value is None:
            return None
        value = value.strip()
        return value or None


@dataclass(frozen=True)
class Classified:
    verdict: Verdict


@dataclass(frozen=True)
class MissingId:
    pass


@dataclass(frozen=True)
class MalformedEntry:
    detail: str


VerdictResult = Union[Classified, MissingId, MalformedEntry]


class OutcomeKind(str, Enum):
    DELETED = "Deleted"
    IGNORED = "Ignored"
    ACTION_FAILED = "ActionFailed"
    DROPPED = "Dropped"


class Outcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    kind: OutcomeKind
    reason: str | None = None
    detail: str | None = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
