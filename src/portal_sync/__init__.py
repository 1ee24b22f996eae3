"""School portal exam sync for the family calendar.

Logs in to the school portal (reusing a cached session when it still works),
reads exam dates from its exam calendar, and narrates every step through a
single progress stream.
"""

from src.portal_sync.channel import ExamSyncStream, ProgressChannel, format_sse
from src.portal_sync.errors import (
    AuthenticationError,
    ConfigurationError,
    CoreError,
    NavigationError,
    ParseError,
)
from src.portal_sync.models import (
    Credential,
    ExamRecord,
    ProgressEvent,
    ProgressStatus,
    ProgressStep,
    ScrapeResult,
)
from src.portal_sync.pipeline import run_exam_sync

__all__ = [
    "run_exam_sync",
    "ExamSyncStream",
    "ProgressChannel",
    "format_sse",
    "Credential",
    "ExamRecord",
    "ProgressEvent",
    "ProgressStatus",
    "ProgressStep",
    "ScrapeResult",
    "CoreError",
    "ConfigurationError",
    "AuthenticationError",
    "NavigationError",
    "ParseError",
]
