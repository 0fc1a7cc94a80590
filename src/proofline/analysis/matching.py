"""Anchor provider-reported issues to offsets inside a block."""

from __future__ import annotations

import logging
import re
from typing import Iterable

from ..core.categories import CategoryRegistry, category_registry
from ..core.ranges import TextSpan
from ..state.models import Block, Issue, IssueSource, IssueStatus
from .provider import BlockContext, ProviderIssue, ProviderResponse

__all__ = ["resolve_provider_issues", "find_unclaimed", "is_false_positive"]

LOGGER = logging.getLogger(__name__)


def resolve_provider_issues(
    block: Block,
    response: ProviderResponse,
    context: BlockContext,
    *,
    source: IssueSource = IssueSource.ANALYSIS,
    categories: CategoryRegistry | None = None,
) -> list[Issue]:
    """Translate provider issues into absolute-offset :class:`Issue` records.

    Issues whose ``original_text`` cannot be found in the block are dropped
    individually; the rest of the response is kept.
    """

    registry = categories or category_registry
    _, block_offset = context.wrap(block.text)
    claimed: list[TextSpan] = []
    resolved: list[Issue] = []

    for raw in response.issues:
        if not registry.is_known(raw.category):
            LOGGER.debug("Skipping issue with unknown category %r", raw.category)
            continue
        if not raw.original_text or not raw.suggested_text:
            continue
        if is_false_positive(raw):
            continue
        span = _locate(block.text, raw, block_offset, claimed)
        if span is None:
            LOGGER.debug("Could not anchor %r in block %s", raw.original_text, block.id)
            continue
        claimed.append(span)
        resolved.append(
            Issue(
                category=raw.category.strip().lower(),
                start_offset=block.start_offset + span.start,
                end_offset=block.start_offset + span.end,
                original_text=span.slice(block.text),
                suggested_text=raw.suggested_text,
                explanation=raw.explanation,
                source=source,
                status=IssueStatus.NEW,
            )
        )
    return resolved


def is_false_positive(raw: ProviderIssue) -> bool:
    return raw.original_text.strip().lower() == raw.suggested_text.strip().lower()


def _locate(text: str, raw: ProviderIssue, block_offset: int, claimed: list[TextSpan]) -> TextSpan | None:
    needle = raw.original_text
    if raw.offset is not None:
        relative = raw.offset - block_offset
        if 0 <= relative and text[relative : relative + len(needle)] == needle:
            hinted = TextSpan(relative, relative + len(needle))
            if not hinted.overlaps_any(claimed):
                return hinted
    exact = find_unclaimed(text, needle, claimed)
    if exact is not None:
        return exact
    return find_unclaimed(text, needle, claimed, ignore_case=True)


def find_unclaimed(
    text: str,
    needle: str,
    claimed: Iterable[TextSpan],
    *,
    ignore_case: bool = False,
) -> TextSpan | None:
    """Return the first occurrence of ``needle`` that overlaps no claimed span."""

    if not needle:
        return None
    taken = list(claimed)
    if ignore_case:
        for match in re.finditer(re.escape(needle), text, re.IGNORECASE):
            span = TextSpan(match.start(), match.end())
            if span.length and not span.overlaps_any(taken):
                return span
        return None
    index = text.find(needle)
    while index != -1:
        span = TextSpan(index, index + len(needle))
        if not span.overlaps_any(taken):
            return span
        index = text.find(needle, index + 1)
    return None
