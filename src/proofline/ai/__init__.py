"""LLM provider stack: OpenAI-compatible client, prompts, caching and rate limits."""

from .cache import CacheStats, ResponseCache
from .client import AIClient, ClientSettings
from .provider import LLMAnalysisProvider, extract_json_payload, parse_provider_response
from .rate_limiter import RateLimiter

__all__ = [
    "AIClient",
    "CacheStats",
    "ClientSettings",
    "LLMAnalysisProvider",
    "RateLimiter",
    "ResponseCache",
    "extract_json_payload",
    "parse_provider_response",
]
