"""Exception hierarchy shared by the analysis engine and provider layer."""

from __future__ import annotations

__all__ = [
    "ProoflineError",
    "ProviderError",
    "ProviderResponseError",
    "ProviderNotConfiguredError",
    "UnknownFieldError",
    "UnknownIssueError",
]


class ProoflineError(Exception):
    """Base class for all package errors."""


class ProviderError(ProoflineError):
    """Raised when the analysis provider cannot produce a usable response."""


class ProviderResponseError(ProviderError):
    """Raised when a provider response is empty, not JSON, or fails schema validation."""

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class ProviderNotConfiguredError(ProviderError):
    """Raised when the provider is missing credentials or an endpoint."""


class UnknownFieldError(ProoflineError, KeyError):
    """Raised when an operation targets a field the store has never observed."""

    def __init__(self, field_id: str) -> None:
        super().__init__(field_id)
        self.field_id = field_id

    def __str__(self) -> str:
        return f"Unknown text field: {self.field_id}"


class UnknownIssueError(ProoflineError, KeyError):
    """Raised when an issue id cannot be located in a field."""

    def __init__(self, field_id: str, issue_id: str) -> None:
        super().__init__(issue_id)
        self.field_id = field_id
        self.issue_id = issue_id

    def __str__(self) -> str:
        return f"Unknown issue {self.issue_id} in field {self.field_id}"
