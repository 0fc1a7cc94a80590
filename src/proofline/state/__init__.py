"""Per-field block state and the data model it is built on."""

from .models import (
    AnalysisResult,
    Block,
    ConfidencePolicy,
    DirtyBlocks,
    Issue,
    IssueCategory,
    IssueCounts,
    IssueSource,
    IssueStatus,
    RequestToken,
    TextField,
    new_request_token,
)
from .store import TextStateStore

__all__ = [
    "AnalysisResult",
    "Block",
    "ConfidencePolicy",
    "DirtyBlocks",
    "Issue",
    "IssueCategory",
    "IssueCounts",
    "IssueSource",
    "IssueStatus",
    "RequestToken",
    "TextField",
    "TextStateStore",
    "new_request_token",
]
