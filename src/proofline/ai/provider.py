"""LLM-backed :class:`~proofline.analysis.provider.AnalysisProvider`."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Iterable

from jsonschema import Draft202012Validator

from ..analysis.provider import BlockContext, ProviderIssue, ProviderResponse
from ..core.categories import CategoryRegistry, category_registry
from ..errors import ProviderResponseError
from .cache import ResponseCache
from .client import AIClient
from .prompts import PromptMode, build_user_message, system_prompt_for
from .rate_limiter import RateLimiter

__all__ = ["LLMAnalysisProvider", "RESPONSE_SCHEMA", "extract_json_payload", "parse_provider_response"]

LOGGER = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 3
MAX_SCHEMA_ERRORS = 5

# Items are only type-checked; incomplete issues are dropped individually
# when they are anchored to the block.
RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["issues"],
    "properties": {
        "issues": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "category": {"type": "string"},
                    "originalText": {"type": "string"},
                    "suggestedText": {"type": "string"},
                    "explanation": {"type": "string"},
                    "offset": {"type": "integer", "minimum": 0},
                },
            },
        }
    },
}

_VALIDATOR = Draft202012Validator(RESPONSE_SCHEMA)
_CODE_BLOCK_PATTERNS = (
    re.compile(r"```json\s*(.*?)\s*```", re.DOTALL),
    re.compile(r"```\s*(.*?)\s*```", re.DOTALL),
)


def extract_json_payload(response: str) -> Any:
    """Extract JSON from raw, fenced, or prose-wrapped model output."""

    if not response or not response.strip():
        raise ProviderResponseError("Empty response", raw=response)

    text = response.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for pattern in _CODE_BLOCK_PATTERNS:
        match = pattern.search(text)
        if match:
            try:
                return json.loads(match.group(1).strip())
            except json.JSONDecodeError:
                continue

    brace_start = text.find("{")
    brace_end = text.rfind("}")
    if brace_start != -1 and brace_end > brace_start:
        try:
            return json.loads(text[brace_start : brace_end + 1])
        except json.JSONDecodeError:
            pass

    raise ProviderResponseError(f"Could not extract JSON from response: {text[:200]}", raw=response)


def parse_provider_response(content: str) -> ProviderResponse:
    """Decode and validate a model reply into a :class:`ProviderResponse`."""

    payload = extract_json_payload(content)
    errors: list[str] = []
    for error in _VALIDATOR.iter_errors(payload):
        path = "/".join(str(part) for part in error.absolute_path)
        errors.append(f"{path}: {error.message}" if path else error.message)
        if len(errors) >= MAX_SCHEMA_ERRORS:
            break
    if errors:
        raise ProviderResponseError("Invalid provider response: " + "; ".join(errors), raw=content)
    return ProviderResponse.from_mapping(payload)


class LLMAnalysisProvider:
    """Checks blocks through an OpenAI-compatible chat endpoint.

    Analysis responses are cached by block text and context; verification
    always goes to the model. Concurrent identical analysis requests share a
    single call. Responses are filtered by the enabled categories and the
    session's ignored words before they reach the engine.
    """

    def __init__(
        self,
        client: AIClient,
        *,
        enabled_categories: Iterable[str] | None = None,
        ignored_words: Iterable[str] = (),
        rate_limiter: RateLimiter | None = None,
        cache: ResponseCache[ProviderResponse] | None = None,
        categories: CategoryRegistry | None = None,
    ) -> None:
        self._client = client
        self._registry = categories or category_registry
        if enabled_categories is None:
            enabled = [cid for cid in self._registry.ids() if self._registry.get(cid).default_enabled]  # type: ignore[union-attr]
        else:
            enabled = [cid.strip().lower() for cid in enabled_categories if self._registry.is_known(cid)]
        self._enabled = tuple(enabled)
        self._ignored = {word.strip().lower() for word in ignored_words if word.strip()}
        self._rate_limiter = rate_limiter or RateLimiter()
        self._cache: ResponseCache[ProviderResponse] = cache if cache is not None else ResponseCache()
        self._inflight: dict[tuple[str, ...], asyncio.Future[ProviderResponse]] = {}

    @property
    def enabled_categories(self) -> tuple[str, ...]:
        return self._enabled

    @property
    def ignored_words(self) -> frozenset[str]:
        return frozenset(self._ignored)

    @property
    def cache(self) -> ResponseCache[ProviderResponse]:
        return self._cache

    def ignore_word(self, word: str) -> None:
        normalized = word.strip().lower()
        if normalized:
            self._ignored.add(normalized)

    async def analyze(self, text: str, context: BlockContext) -> ProviderResponse:
        if _is_trivial(text):
            return ProviderResponse()
        key = ("analyze", text, context.previous_text or "", context.next_text or "", *self._enabled)
        cached = self._cache.get(key)
        if cached is not None:
            LOGGER.debug("Analysis cache hit (%s chars)", len(text))
            return self._filter(cached)

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._request("analyze", text, context))
            self._inflight[key] = pending
            pending.add_done_callback(lambda future, k=key: self._release(k, future))
        else:
            LOGGER.debug("Joining in-flight analysis request (%s chars)", len(text))

        response = await asyncio.shield(pending)
        self._cache.set(key, response)
        return self._filter(response)

    async def verify(self, text: str, context: BlockContext) -> ProviderResponse:
        if _is_trivial(text):
            return ProviderResponse()
        response = await self._request("verify", text, context)
        return self._filter(response)

    def _release(self, key: tuple[str, ...], future: asyncio.Future[ProviderResponse]) -> None:
        self._inflight.pop(key, None)
        if not future.cancelled() and future.exception() is not None:
            LOGGER.debug("Analysis request failed: %s", future.exception())

    async def aclose(self) -> None:
        for future in list(self._inflight.values()):
            future.cancel()
        self._inflight.clear()
        await self._client.aclose()

    async def _request(self, mode: PromptMode, text: str, context: BlockContext) -> ProviderResponse:
        await self._rate_limiter.acquire()
        message = build_user_message(mode, text, self._enabled, context)
        content = await self._client.complete_json(system_prompt_for(mode), message)
        response = parse_provider_response(content)
        LOGGER.debug("Provider %s returned %s issue(s)", mode, len(response.issues))
        return response

    def _filter(self, response: ProviderResponse) -> ProviderResponse:
        enabled = set(self._enabled)
        kept = tuple(issue for issue in response.issues if self._keep(issue, enabled))
        if len(kept) == len(response.issues):
            return response
        return ProviderResponse(issues=kept)

    def _keep(self, issue: ProviderIssue, enabled: set[str]) -> bool:
        if issue.category not in enabled:
            return False
        return issue.original_text.strip().lower() not in self._ignored


def _is_trivial(text: str) -> bool:
    return not text.strip() or len(text) < MIN_TEXT_LENGTH
