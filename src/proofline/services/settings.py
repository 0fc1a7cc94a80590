"""Settings dataclass and environment-driven loading."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping

from ..ai.client import ClientSettings
from ..blocks.splitter import SplitConfig
from ..core.categories import category_registry
from ..state.models import ConfidencePolicy

__all__ = ["Settings", "load_settings", "redact_secret"]

LOGGER = logging.getLogger(__name__)

_ENV_OVERRIDES: Mapping[str, str] = {
    "PROOFLINE_API_KEY": "api_key",
    "PROOFLINE_BASE_URL": "base_url",
    "PROOFLINE_MODEL": "model",
    "PROOFLINE_ORGANIZATION": "organization",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "PROOFLINE_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "PROOFLINE_REQUEST_TIMEOUT": "request_timeout",
    "PROOFLINE_TEMPERATURE": "temperature",
    "PROOFLINE_IDLE_DELAY": "idle_delay",
    "PROOFLINE_CACHE_TTL": "cache_ttl_seconds",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "PROOFLINE_MAX_RETRIES": "max_retries",
    "PROOFLINE_MAX_BLOCK_SIZE": "max_block_size",
    "PROOFLINE_MIN_BLOCK_SIZE": "min_block_size",
    "PROOFLINE_CONTEXT_CHARS": "context_chars",
    "PROOFLINE_RATE_LIMIT": "rate_limit_requests",
}
_LIST_ENV_OVERRIDES: Mapping[str, str] = {
    "PROOFLINE_CATEGORIES": "enabled_categories",
    "PROOFLINE_IGNORED_WORDS": "ignored_words",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


def _default_categories() -> list[str]:
    return [cid for cid in category_registry.ids() if category_registry.get(cid).default_enabled]  # type: ignore[union-attr]


@dataclass(slots=True)
class Settings:
    """Runtime configuration for a checker session."""

    base_url: str = "https://api.groq.com/openai/v1"
    api_key: str = ""
    model: str = "llama-3.1-8b-instant"
    organization: str | None = None
    temperature: float = 0.05
    max_tokens: int = 2048
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    max_block_size: int = 500
    min_block_size: int = 50
    context_chars: int = 200
    idle_delay: float = 1.0
    stable_threshold: float = 0.8
    max_passes: int = 2
    confidence_boost: float = 0.5
    confidence_penalty: float = 0.3
    rate_limit_requests: int = 30
    rate_limit_window: float = 60.0
    cache_max_entries: int = 100
    cache_ttl_seconds: float = 300.0
    enabled_categories: list[str] = field(default_factory=_default_categories)
    ignored_words: list[str] = field(default_factory=list)
    debug_logging: bool = False

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            default_headers=dict(self.default_headers) or None,
            debug_logging=self.debug_logging,
        )

    def confidence_policy(self) -> ConfidencePolicy:
        return ConfidencePolicy(
            stable_threshold=self.stable_threshold,
            max_passes=self.max_passes,
            boost=self.confidence_boost,
            penalty=self.confidence_penalty,
        )

    def split_config(self) -> SplitConfig:
        return SplitConfig(max_block_size=self.max_block_size, min_block_size=self.min_block_size)

    def describe(self) -> dict[str, Any]:
        """Field values with the API key redacted, suitable for logging."""

        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["api_key"] = redact_secret(self.api_key)
        return payload


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """Build settings from defaults, ``PROOFLINE_*`` variables, then ``overrides``."""

    settings = _apply_env_overrides(Settings(), os.environ if env is None else env)
    if overrides:
        settings = _apply_overrides(settings, overrides, source="runtime")
    return settings


def _apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    allowed = {item.name for item in fields(Settings)}
    filtered: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in allowed or value is None:
            continue
        filtered[key] = value
    if filtered:
        LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
        settings = replace(settings, **filtered)
    return settings


def _apply_env_overrides(settings: Settings, env: Mapping[str, str]) -> Settings:
    overrides: Dict[str, Any] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value
    for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value.strip().lower() in _TRUE_VALUES
    for env_name, field_name in _INT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = int(value, 10)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
    for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = float(value)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
    for env_name, field_name in _LIST_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = [item.strip() for item in value.split(",") if item.strip()]
    if overrides:
        settings = _apply_overrides(settings, overrides, source="environment")
    return settings


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
