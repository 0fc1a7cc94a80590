"""Consumer callbacks for first-pass and stability-pass events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from ..state.models import AnalysisResult, Issue

__all__ = ["BlockAnalysisCallbacks", "StabilityPassCallbacks", "invoke_callback"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BlockAnalysisCallbacks:
    on_block_analysis_start: Callable[[str, str], None] | None = None
    on_block_analysis_complete: Callable[[str, str, Sequence[Issue]], None] | None = None
    on_block_analysis_error: Callable[[str, str, str], None] | None = None
    on_all_blocks_complete: Callable[[str, AnalysisResult], None] | None = None


@dataclass(slots=True)
class StabilityPassCallbacks:
    on_stability_pass_start: Callable[[str, Sequence[str]], None] | None = None
    on_block_verified: Callable[[str, str, Sequence[Issue]], None] | None = None
    on_stability_pass_complete: Callable[[str, AnalysisResult], None] | None = None
    on_stability_pass_cancelled: Callable[[str], None] | None = None


def invoke_callback(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Call ``callback`` if set; consumer errors are logged, never raised."""

    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        LOGGER.exception("Callback %s failed", getattr(callback, "__name__", callback))
