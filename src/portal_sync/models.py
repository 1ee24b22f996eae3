"""Pydantic models for portal sync data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
Records produced by one invocation (ExamRecord, ScrapeResult) are frozen.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Cookie dicts in Playwright storage-state shape ({"name", "value", "domain", ...}).
SessionState = list[dict[str, Any]]


class Credential(BaseModel):
    """Portal login supplied by the caller for a single sync attempt."""

    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)


class ProgressStep(str, Enum):
    INIT = "init"
    AUTH = "auth"
    NAVIGATE = "navigate"
    FIND_EXAMS = "find_exams"
    SAVE = "save"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressStatus(str, Enum):
    STARTED = "started"
    SUCCESS = "success"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressEvent(BaseModel):
    """One entry in the progress narrative of a sync invocation."""

    model_config = ConfigDict(frozen=True)

    step: ProgressStep
    status: ProgressStatus
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.step is ProgressStep.COMPLETE or self.status is ProgressStatus.ERROR


class ExamRecord(BaseModel):
    """A single exam parsed from one exam table on the portal calendar page."""

    model_config = ConfigDict(frozen=True)

    title: str  # "Sanakoe teksti 7 (Englanti, A1)"
    date: str  # ISO date, "2026-02-03"
    time: str = "08:00"  # portal shows no start times
    type: Literal["exam"] = "exam"
    source: Literal["school"] = "school"


class ScrapeResult(BaseModel):
    """Return value of one successful sync invocation."""

    model_config = ConfigDict(frozen=True)

    exams: tuple[ExamRecord, ...] = ()
    cookies: SessionState = Field(default_factory=list)
