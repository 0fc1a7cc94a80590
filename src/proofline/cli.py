"""Command line entry point: check a text file against the configured model."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from .ai.cache import ResponseCache
from .ai.client import AIClient
from .ai.provider import LLMAnalysisProvider
from .ai.rate_limiter import RateLimiter
from .analysis.callbacks import BlockAnalysisCallbacks
from .analysis.provider import AnalysisProvider
from .engine import CheckerSession
from .errors import ProoflineError, ProviderError
from .services.settings import Settings, load_settings
from .state.models import AnalysisResult
from .utils.logging import level_for, setup_logging

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ISSUES = 1
EXIT_ERROR = 2
FIELD_ID = "cli"


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command != "check":
        parser.print_help()
        return EXIT_ERROR

    try:
        text = _load_text(args.file)
    except OSError as exc:
        print(f"error: cannot read {args.file}: {exc.strerror or exc}", file=sys.stderr)
        return EXIT_ERROR
    overrides = {
        "model": args.model,
        "base_url": args.base_url,
        "enabled_categories": args.categories.split(",") if args.categories else None,
        "debug_logging": True if args.verbose else None,
    }
    settings = load_settings(overrides)
    setup_logging(level_for(args.verbose, settings.debug_logging), file=args.log_file, force=True)
    try:
        provider = build_provider(settings)
    except ProoflineError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR

    try:
        result = asyncio.run(run_check(provider, text, settings, stability=not args.no_stability))
    except ProoflineError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(format_result(result))
    return EXIT_ISSUES if result.issues else EXIT_OK


def build_provider(settings: Settings) -> LLMAnalysisProvider:
    client = AIClient(settings.client_settings())
    return LLMAnalysisProvider(
        client,
        enabled_categories=settings.enabled_categories,
        ignored_words=settings.ignored_words,
        rate_limiter=RateLimiter(settings.rate_limit_requests, settings.rate_limit_window),
        cache=ResponseCache(settings.cache_max_entries, settings.cache_ttl_seconds),
    )


async def run_check(
    provider: AnalysisProvider,
    text: str,
    settings: Settings,
    *,
    stability: bool = True,
) -> AnalysisResult:
    """Run one first pass (plus stability passes) and return the merged result.

    Raises :class:`ProviderError` when any block could not be analyzed.
    """

    errors: list[str] = []
    callbacks = BlockAnalysisCallbacks(
        on_block_analysis_error=lambda _field, block_id, message: errors.append(f"{block_id}: {message}"),
    )
    session = CheckerSession(
        provider,
        settings=settings,
        analysis_callbacks=callbacks,
        stability_enabled=stability,
    )
    try:
        session.on_text_changed(FIELD_ID, text)
        await session.wait_until_idle([FIELD_ID])
        for message in errors:
            LOGGER.warning("Block analysis failed (%s)", message)
        if errors:
            raise ProviderError(f"{len(errors)} block(s) could not be checked; first failure: {errors[0]}")
        return session.current_result(FIELD_ID) or AnalysisResult(text=text)
    finally:
        await session.aclose()
        close = getattr(provider, "aclose", None)
        if close is not None:
            await close()


def format_result(result: AnalysisResult) -> str:
    if not result.issues:
        return "No issues found."
    lines = []
    for issue in result.issues:
        line, column = _line_column(result.text, issue.start_offset)
        lines.append(
            f"{line}:{column}  {issue.category:<9} {issue.original_text!r} -> {issue.suggested_text!r}"
            + (f"  {issue.explanation}" if issue.explanation else "")
        )
    counts = result.counts()
    summary = ", ".join(f"{category}: {count}" for category, count in sorted(counts.by_category.items()))
    lines.append(f"{counts.total} issue(s) ({summary})")
    return "\n".join(lines)


def _line_column(text: str, offset: int) -> tuple[int, int]:
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return line, column


def _load_text(path: Path | None) -> str:
    if path is None or str(path) == "-":
        return sys.stdin.read()
    return path.read_text(encoding="utf-8")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="proofline", description="Incremental writing checks backed by an LLM.")
    subparsers = parser.add_subparsers(dest="command")

    check = subparsers.add_parser("check", help="Check a text file and print the issues found.")
    check.add_argument("file", type=Path, nargs="?", help="File to check; reads stdin when omitted or '-'.")
    check.add_argument("--model", help="Model identifier (defaults to PROOFLINE_MODEL or the built-in default).")
    check.add_argument("--base-url", dest="base_url", help="OpenAI-compatible endpoint URL.")
    check.add_argument("--categories", help="Comma-separated categories to report.")
    check.add_argument("--no-stability", action="store_true", help="Skip the idle stability pass.")
    check.add_argument("--json", action="store_true", help="Print the result as JSON.")
    check.add_argument("--log-file", action="store_true", help="Also write logs to the rotating log file.")
    check.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
