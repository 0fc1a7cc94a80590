"""Dataclasses describing per-field block and issue state."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, NewType

from ..core.ranges import TextSpan

__all__ = [
    "RequestToken",
    "new_request_token",
    "IssueCategory",
    "IssueSource",
    "IssueStatus",
    "Issue",
    "Block",
    "TextField",
    "DirtyBlocks",
    "AnalysisResult",
    "IssueCounts",
    "ConfidencePolicy",
    "parse_confidence",
]

RequestToken = NewType("RequestToken", str)

_CONFIDENCE_SUFFIX = re.compile(r"confidence:\s*([01](?:\.\d+)?)", re.IGNORECASE)


def new_request_token(prefix: str = "req") -> RequestToken:
    """Return a fresh opaque token identifying one provider request."""

    return RequestToken(f"{prefix}_{uuid.uuid4().hex}")


def new_issue_id() -> str:
    return f"issue_{uuid.uuid4().hex[:12]}"


class IssueCategory(str, Enum):
    SPELLING = "spelling"
    GRAMMAR = "grammar"
    STYLE = "style"
    CLARITY = "clarity"
    TONE = "tone"
    REPHRASE = "rephrase"


class IssueSource(str, Enum):
    ANALYSIS = "analysis"
    VERIFICATION = "verification"


class IssueStatus(str, Enum):
    NEW = "new"
    APPLIED = "applied"
    VERIFIED = "verified"
    STALE = "stale"


def parse_confidence(explanation: str | None) -> float | None:
    """Extract the ``Confidence: 0.93`` score providers append to explanations."""

    if not explanation:
        return None
    match = _CONFIDENCE_SUFFIX.search(explanation)
    if match is None:
        return None
    value = float(match.group(1))
    return value if 0.0 <= value <= 1.0 else None


@dataclass(slots=True, frozen=True)
class ConfidencePolicy:
    """Thresholds driving the per-block convergence state machine."""

    stable_threshold: float = 0.8
    max_passes: int = 2
    boost: float = 0.5
    penalty: float = 0.3

    def __post_init__(self) -> None:
        if not 0.0 < self.stable_threshold <= 1.0:
            raise ValueError("stable_threshold must be in (0, 1]")
        if self.max_passes < 1:
            raise ValueError("max_passes must be at least 1")


@dataclass(slots=True)
class Issue:
    """A single writing issue anchored to absolute offsets in the field text.

    ``category`` is usually an :class:`IssueCategory` value but stays a plain
    string so hosts can register extra categories.
    """

    category: str
    start_offset: int
    end_offset: int
    original_text: str
    suggested_text: str
    explanation: str = ""
    source: IssueSource = IssueSource.ANALYSIS
    status: IssueStatus | None = IssueStatus.NEW
    ignored: bool = False
    confidence: float | None = None
    id: str = field(default_factory=new_issue_id)

    def __post_init__(self) -> None:
        if isinstance(self.category, IssueCategory):
            self.category = self.category.value
        if self.confidence is None:
            self.confidence = parse_confidence(self.explanation)

    @property
    def span(self) -> TextSpan:
        return TextSpan(self.start_offset, self.end_offset)

    @property
    def key(self) -> tuple[int, int, str]:
        """Identity used for de-duplication across passes."""

        return (self.start_offset, self.end_offset, self.suggested_text)

    @property
    def is_unapplied(self) -> bool:
        return not self.ignored and (self.status is None or self.status is IssueStatus.NEW)

    def shifted(self, delta: int) -> "Issue":
        """Return a copy moved by ``delta`` characters."""

        return replace(self, start_offset=self.start_offset + delta, end_offset=self.end_offset + delta)

    def copy(self) -> "Issue":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "original_text": self.original_text,
            "suggested_text": self.suggested_text,
            "explanation": self.explanation,
            "source": self.source.value,
            "status": self.status.value if self.status is not None else None,
            "ignored": self.ignored,
            "confidence": self.confidence,
        }


@dataclass(slots=True)
class Block:
    """Analysis state for one contiguous segment of a field's text."""

    id: str
    start_offset: int
    end_offset: int
    hash: str
    text: str
    issues: list[Issue] = field(default_factory=list)
    is_analyzed: bool = False
    is_analyzing: bool = False
    is_stability_checking: bool = False
    confidence: float = 0.0
    passes: int = 0
    has_unapplied_issues: bool = False
    active_request_token: RequestToken | None = None

    @property
    def span(self) -> TextSpan:
        return TextSpan(self.start_offset, self.end_offset)

    @property
    def is_busy(self) -> bool:
        return self.is_analyzing or self.is_stability_checking

    def refresh_unapplied(self) -> bool:
        self.has_unapplied_issues = any(issue.is_unapplied for issue in self.issues)
        return self.has_unapplied_issues

    def contains_offset(self, offset: int) -> bool:
        return self.start_offset <= offset < self.end_offset


@dataclass(slots=True)
class TextField:
    """Authoritative text and block list for one editable surface."""

    field_id: str
    text: str = ""
    version: int = 0
    blocks: list[Block] = field(default_factory=list)
    _next_block_seq: int = field(default=1, repr=False)

    def next_block_id(self) -> str:
        block_id = f"b{self._next_block_seq}"
        self._next_block_seq += 1
        return block_id

    def find_block(self, block_id: str) -> Block | None:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    def index_of(self, block_id: str) -> int:
        for index, block in enumerate(self.blocks):
            if block.id == block_id:
                return index
        return -1

    def bump(self) -> int:
        self.version += 1
        return self.version


@dataclass(slots=True)
class DirtyBlocks:
    """Outcome of reconciling a field's previous blocks against new text."""

    dirty_blocks: list[Block]
    clean_blocks: list[Block]
    all_blocks: list[Block]

    @property
    def has_dirty(self) -> bool:
        return bool(self.dirty_blocks)


@dataclass(slots=True)
class IssueCounts:
    by_category: dict[str, int] = field(default_factory=dict)
    total: int = 0

    def get(self, category: str) -> int:
        return self.by_category.get(category, 0)


@dataclass(slots=True)
class AnalysisResult:
    """Merged, presentation-ready issue set for a field."""

    text: str
    issues: list[Issue] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def counts(self) -> IssueCounts:
        counts = IssueCounts()
        for issue in self.issues:
            counts.by_category[issue.category] = counts.by_category.get(issue.category, 0) + 1
            counts.total += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "issues": [issue.to_dict() for issue in self.issues],
            "timestamp": self.timestamp,
        }
