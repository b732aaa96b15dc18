"""
Structured error types for implspine.

Every error raised or recorded by the aggregation layer carries a category and
a structured context so that diagnostics (logs, the reject log, the CLI) can
report it without parsing messages.

Manifesto:
    A page that merges dozens of independently loaded fragments must never
    break because one of them is bad. Errors are therefore mostly *recorded*
    rather than raised: the broker turns them into rejects and log lines.
    When an error does cross an API boundary (fragment parsing, strict
    registration, configuration) it is typed, so callers can tell a malformed
    contribution from an unreadable file from a programming mistake.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────┐
        │                     ImplSpineError                        │
        │            (category, context, cause)                     │
        ├──────────────────────────────────────────────────────────┤
        │  ContributionError     FragmentError      ConsumerError   │
        │  (VALIDATION)          (SOURCE)           (INTERNAL)      │
        │       │                    │                   │          │
        │  MalformedContribution FragmentParseError  ConsumerAlready│
        │                        FragmentReadError   RegisteredError│
        │                                                           │
        │  ConfigError (CONFIG)                                     │
        └──────────────────────────────────────────────────────────┘

Examples:
    >>> err = MalformedContributionError("source_id is empty", field="source_id", value="")
    >>> err.category
    <ErrorCategory.VALIDATION: 'VALIDATION'>
    >>> err.to_dict()["field"]
    'source_id'

Tags:
    error-handling, exception-hierarchy, error-context, implspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    SOURCE = "SOURCE"  # Fragment missing or unreadable
    PARSE = "PARSE"  # Fragment text does not decode
    VALIDATION = "VALIDATION"  # Contribution shape violations
    CONFIG = "CONFIG"  # Invalid settings
    INTERNAL = "INTERNAL"  # Caller logic errors, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        marker: Marker page the error belongs to (e.g. ``core::marker::Unpin``)
        source_id: Contribution source identifier, when known
        source_locator: Where the data came from (usually a fragment path)
        consumer: Name of the consumer handle involved
        metadata: Additional key-value pairs
    """

    marker: str | None = None
    source_id: str | None = None
    source_locator: str | None = None
    consumer: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["marker", "source_id", "source_locator", "consumer"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ImplSpineError(Exception):
    """
    Base exception for all implspine errors.

    Subclasses set ``default_category``; every instance carries a message,
    a category, an :class:`ErrorContext` and an optional chained cause.

    Examples:
        >>> error = ImplSpineError("unexpected state")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = FragmentReadError("cannot read").with_context(source_locator="a.js")
        >>> error.context.source_locator
        'a.js'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ImplSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise FragmentParseError("no assignment").with_context(
                source_locator="implementors/core/marker/trait.Unpin.js"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONTRIBUTION ERRORS
# =============================================================================


class ContributionError(ImplSpineError):
    """
    A contribution failed structural validation.

    Never fatal to the page: the broker records it as a reject and moves on.
    """

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class MalformedContributionError(ContributionError):
    """Missing or invalid ``source_id``, or ``records`` of the wrong shape."""

    pass


# =============================================================================
# FRAGMENT ERRORS
# =============================================================================


class FragmentError(ImplSpineError):
    """Error reading or decoding a fragment file."""

    default_category = ErrorCategory.SOURCE


class FragmentReadError(FragmentError):
    """Fragment file could not be read."""

    pass


class FragmentParseError(FragmentError):
    """Fragment text is not in a recognised payload format."""

    default_category = ErrorCategory.PARSE


# =============================================================================
# CONSUMER ERRORS
# =============================================================================


class ConsumerError(ImplSpineError):
    """Misuse of the consumer side of the broker."""

    default_category = ErrorCategory.INTERNAL


class ConsumerAlreadyRegisteredError(ConsumerError):
    """A second consumer tried to register on a broker that already has one."""

    pass


# =============================================================================
# CONFIG ERRORS
# =============================================================================


class ConfigError(ImplSpineError):
    """Invalid implspine settings."""

    default_category = ErrorCategory.CONFIG


def categorize_error(error: Exception) -> ErrorCategory:
    """Return the category of an error, ``UNKNOWN`` for foreign exceptions."""
    if isinstance(error, ImplSpineError):
        return error.category
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ImplSpineError",
    "ContributionError",
    "MalformedContributionError",
    "FragmentError",
    "FragmentReadError",
    "FragmentParseError",
    "ConsumerError",
    "ConsumerAlreadyRegisteredError",
    "ConfigError",
    "categorize_error",
]
