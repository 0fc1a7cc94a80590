"""Contract between the engine and an external analysis provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

__all__ = ["AnalysisProvider", "BlockContext", "ProviderIssue", "ProviderResponse"]


@dataclass(slots=True, frozen=True)
class BlockContext:
    """Neighbouring text sent alongside a block for disambiguation."""

    previous_text: str | None = None
    next_text: str | None = None

    def wrap(self, text: str) -> tuple[str, int]:
        """Return ``text`` surrounded by its context and the block's offset within it."""

        prefix = self.previous_text or ""
        suffix = self.next_text or ""
        return f"{prefix}{text}{suffix}", len(prefix)

    @property
    def is_empty(self) -> bool:
        return not self.previous_text and not self.next_text


@dataclass(slots=True, frozen=True)
class ProviderIssue:
    """An issue as reported by the provider, before offsets are resolved.

    ``offset``, when given, is relative to ``BlockContext.wrap(text)[0]``.
    """

    category: str
    original_text: str
    suggested_text: str
    explanation: str = ""
    offset: int | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ProviderIssue":
        offset = payload.get("offset", payload.get("startOffset"))
        return cls(
            category=str(payload.get("category") or "").strip().lower(),
            original_text=str(payload.get("originalText", payload.get("original_text")) or ""),
            suggested_text=str(payload.get("suggestedText", payload.get("suggested_text")) or ""),
            explanation=str(payload.get("explanation") or ""),
            offset=int(offset) if isinstance(offset, int) and not isinstance(offset, bool) else None,
        )


@dataclass(slots=True, frozen=True)
class ProviderResponse:
    issues: Sequence[ProviderIssue] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ProviderResponse":
        raw_issues = payload.get("issues") or ()
        issues = tuple(ProviderIssue.from_mapping(item) for item in raw_issues if isinstance(item, Mapping))
        return cls(issues=issues)


@runtime_checkable
class AnalysisProvider(Protocol):
    """Asynchronous checker the engine dispatches blocks to."""

    async def analyze(self, text: str, context: BlockContext) -> ProviderResponse:
        """Return every issue found in ``text``."""
        ...

    async def verify(self, text: str, context: BlockContext) -> ProviderResponse:
        """Return issues newly visible in ``text`` using a narrower check."""
        ...
