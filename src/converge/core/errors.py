"""
Structured error types for the convergence controller.

Every failure a reconciliation pass can hit is expressed as a
``ConvergeError`` subclass carrying enough metadata for the caller to
choose a requeue policy and for an operator to diagnose the failure from
the topology's conditions alone.

Manifesto:
    - **Typed hierarchy:** NotFound, conflict, transient and configuration
      failures are distinct types, not message strings
    - **Explicit retry semantics:** Each error knows whether retrying can help
    - **Rich context:** Errors carry the topology, stage and resource involved
    - **Error chaining:** The original exception is preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ConvergeError                              │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  NotFoundError     ConflictError      TransientError            │
        │  (STORE)           (STORE)            (NETWORK, retryable)      │
        │                                            │                     │
        │                                       NetworkError              │
        │                                       CollaboratorError         │
        │                                                                  │
        │  ConfigError       AlreadyOwnedError  StageError                │
        │  (CONFIG)          (CONFIG)           (PIPELINE)                │
        │       │                                                          │
        │  InvalidReferenceError                                          │
        └─────────────────────────────────────────────────────────────────┘

    NotFound is "not yet provisioned": stages translate it into a waiting
    condition and the caller requeues. Configuration errors do not heal
    without user action, but there is no terminal state, so the caller
    still requeues them under its standard policy.

Examples:
    >>> error = NotFoundError("secret osp-secret not found")
    >>> error.retryable
    True
    >>> error.with_context(resource_kind="Secret", resource_name="osp-secret")
    NotFoundError('secret osp-secret not found', category=STORE)

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    reconciliation

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Grouped by their typical requeue behavior:
    - **Infrastructure (usually transient):** STORE, NETWORK, DEPENDENCY
    - **Configuration (needs user action):** CONFIG
    - **Controller bugs:** PIPELINE, INTERNAL
    """

    STORE = "STORE"               # Resource store reads/writes
    NETWORK = "NETWORK"           # HTTP fetch, connection failures
    DEPENDENCY = "DEPENDENCY"     # A collaborator reported failure
    CONFIG = "CONFIG"             # Malformed references, ownership clashes
    PIPELINE = "PIPELINE"         # Stage pipeline invariant violated
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error for logging.

    Attributes:
        topology: Name of the declared topology being reconciled
        namespace: Namespace of the topology
        stage: Pipeline stage the error surfaced from
        resource_kind: Kind of the child resource involved
        resource_name: Name of the child resource involved
        url: URL that was being fetched
        metadata: Additional key-value pairs
    """

    topology: str | None = None
    namespace: str | None = None
    stage: str | None = None
    resource_kind: str | None = None
    resource_name: str | None = None
    url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["topology", "namespace", "stage", "resource_kind",
                    "resource_name", "url"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ConvergeError(Exception):
    """
    Base exception for all controller errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    raising sites only pass what differs from the domain default.

    Examples:
        >>> error = ConvergeError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> try:
        ...     raise ConnectionError("DNS lookup failed")
        ... except ConnectionError as e:
        ...     error = ConvergeError("Network error", cause=e)
        >>> error.cause
        ConnectionError('DNS lookup failed')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ConvergeError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("missing").with_context(
                resource_kind="Secret",
                resource_name="osp-secret",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORE ERRORS
# =============================================================================


class NotFoundError(ConvergeError):
    """
    The requested resource does not exist (yet).

    Drives a requeue rather than a terminal failure: a missing child is
    usually one that another controller has not provisioned yet.
    """

    default_category = ErrorCategory.STORE
    default_retryable = True

    def __init__(
        self,
        message: str | None = None,
        *,
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message or f"{kind} {namespace}/{name} not found", **kwargs)
        self.kind = kind
        self.name = name
        self.namespace = namespace
        if kind is not None:
            self.with_context(resource_kind=kind, resource_name=name, namespace=namespace)


class ConflictError(ConvergeError):
    """Optimistic-concurrency write rejected because the stored version moved on."""

    default_category = ErrorCategory.STORE
    default_retryable = True


class AlreadyOwnedError(ConvergeError):
    """A child resource is already controlled by a different owner."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(ConvergeError):
    """
    Temporary error that may succeed on a later pass.

    Surfaced as a stage failure; the caller's exponential backoff does
    the waiting.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Network-related transient error (HTTP fetch, connection refused)."""

    default_category = ErrorCategory.NETWORK


class CollaboratorError(TransientError):
    """An external collaborator reported a failure."""

    default_category = ErrorCategory.DEPENDENCY


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(ConvergeError):
    """
    Configuration error.

    Does not self-heal; the user has to change the declared topology.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidReferenceError(ConfigError):
    """A reference in the declared topology is malformed."""

    def __init__(self, field_name: str, value: Any, message: str | None = None):
        self.field_name = field_name
        self.value = value
        super().__init__(message or f"Invalid reference in {field_name}: {value!r}")


# =============================================================================
# PIPELINE ERRORS
# =============================================================================


class StageError(ConvergeError):
    """A stage was entered without the preconditions it depends on."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_not_found(error: BaseException | None) -> bool:
    """Check whether an error means "resource absent"."""
    return isinstance(error, NotFoundError)


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ConvergeError):
        return error.retryable
    retryable_types = (
        ConnectionError,
        BrokenPipeError,
        OSError,
    )
    return isinstance(error, retryable_types)


def get_retry_after(error: Exception) -> float | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, ConvergeError):
        return error.retry_after
    return None


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ConvergeError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, (KeyError, AttributeError, ValueError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ConvergeError",
    "NotFoundError",
    "ConflictError",
    "AlreadyOwnedError",
    "TransientError",
    "NetworkError",
    "CollaboratorError",
    "ConfigError",
    "InvalidReferenceError",
    "StageError",
    "is_not_found",
    "is_retryable",
    "get_retry_after",
    "categorize_error",
]
