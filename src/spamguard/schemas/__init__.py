"""
Pydantic schemas shared by the pipeline and its collaborators.
"""

from .classification import (  # noqa: F401
    Classified,
    MalformedEntry,
    MissingId,
    Outcome,
    OutcomeKind,
    Verdict,
    VerdictResult,
)
from .messages import InboundMessage, Priority, WebSummary, WorkItem, classify_priority, contains_url  # noqa: F401
