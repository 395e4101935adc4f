"""
Custom exceptions for DE-MainFrame.

The analysis engine itself does not raise: malformed queries degrade to empty
extraction and macro validation returns structured results. These exceptions
are raised at the boundary, where files are read and configuration is built.
"""

from typing import Any


class DeMainframeException(Exception):
    """Base exception for all DE-MainFrame errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(DeMainframeException):
    """Raised when configuration is invalid."""


class CorpusLoadError(DeMainframeException):
    """Raised when a detection corpus, macro list or metadata document cannot be read."""


class DetectionNotFoundError(DeMainframeException):
    """Raised when a detection name is not present in the corpus."""
