"""Exception types raised by the analysis agent."""

from __future__ import annotations

from typing import Optional


class AnalysisError(Exception):
    """Base class for every error raised by pr_analyst."""


class InvalidRequestError(AnalysisError, ValueError):
    """The caller asked for something that cannot be analyzed (empty diff, no mode)."""


class ConfigurationError(AnalysisError):
    """A required setting or credential is missing."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class OracleError(AnalysisError, RuntimeError):
    """The completion service failed to return a usable response."""


class SourceHostError(AnalysisError):
    """The source-hosting API returned an unexpected error."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
