"""
Standardized error model with retry semantics.

This module defines a hierarchy of service errors that classify whether
an error is retryable, and the typed authorization taxonomy surfaced by
every layer of the core. Errors carry a stable ``code`` and an optional
attribute map (for example ``missing_rights``) that transports render
unchanged.
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Standardized service error with retry classification.

    Attributes:
        code: Error code for programmatic handling.
        message_safe: Safe message for logging and user display.
        message_debug: Optional detailed message for debugging.
        retryable: Whether this error can be retried.
        cause: Optional underlying exception.
        debug_id: Unique identifier for support tickets.
        attributes: Structured details safe to return to the caller.
    """

    http_status: int = 500

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
        attributes: dict[str, Any] | None = None,
    ):
        """Initialize a ServiceError.

        Args:
            code: Machine-readable error code.
            message_safe: Human-readable message safe for logs.
            message_debug: Optional detailed debug message.
            retryable: Whether the operation can be retried.
            cause: Optional underlying exception.
            debug_id: Optional correlation ID (auto-generated if None).
            attributes: Optional attribute map returned with the error.
        """
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]
        self.attributes = dict(attributes or {})

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses.

        Returns:
            Dictionary with error details (excludes debug info).
        """
        return {
            "code": self.code,
            "message": self.message_safe,
            "attributes": self.attributes,
            "debug_id": self.debug_id,
        }


class RetryableError(ServiceError):
    """Error that indicates the operation can be retried.

    Use this for transient failures like network timeouts, unavailable
    backends and aborted serializable transactions.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
        attributes: dict[str, Any] | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=True,
            cause=cause,
            debug_id=debug_id,
            attributes=attributes,
        )


class TerminalError(ServiceError):
    """Error that indicates the operation should not be retried.

    Use this for permanent failures like invalid input, authorization
    failures, missing resources and business rule violations.
    """

    http_status = 400

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
        attributes: dict[str, Any] | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
            debug_id=debug_id,
            attributes=attributes,
        )


class ErrorCode:
    """Stable error names returned to callers."""

    UNAUTHENTICATED = "unauthenticated"
    TOKEN_EXPIRED = "token_expired"
    CREDENTIAL_EXPIRED = "credential_expired"
    MALFORMED_CREDENTIAL = "malformed_credential"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    FAILED_PRECONDITION = "failed_precondition"
    ENTITY_NEEDS_COLLABORATOR = "entity_needs_collaborator"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class _TypedError(TerminalError):
    """Terminal error whose code is fixed by its class."""

    default_code: str = ErrorCode.INTERNAL

    def __init__(
        self,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        attributes: dict[str, Any] | None = None,
        **extra: Any,
    ):
        attrs = dict(attributes or {})
        attrs.update({k: v for k, v in extra.items() if v is not None})
        super().__init__(
            code=self.default_code,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
            attributes=attrs,
        )


class UnauthenticatedError(_TypedError):
    """No credential where one is required, or the credential is not valid."""

    default_code = ErrorCode.UNAUTHENTICATED
    http_status = 401


class TokenExpiredError(UnauthenticatedError):
    default_code = ErrorCode.TOKEN_EXPIRED


class CredentialExpiredError(UnauthenticatedError):
    default_code = ErrorCode.CREDENTIAL_EXPIRED


class MalformedCredentialError(_TypedError):
    """The bearer string does not decode."""

    default_code = ErrorCode.MALFORMED_CREDENTIAL
    http_status = 400


class PermissionDeniedError(_TypedError):
    default_code = ErrorCode.PERMISSION_DENIED
    http_status = 403


class NotFoundError(_TypedError):
    default_code = ErrorCode.NOT_FOUND
    http_status = 404


class InvalidArgumentError(_TypedError):
    default_code = ErrorCode.INVALID_ARGUMENT
    http_status = 400


class FailedPreconditionError(_TypedError):
    default_code = ErrorCode.FAILED_PRECONDITION
    http_status = 400


class EntityNeedsCollaboratorError(FailedPreconditionError):
    """The mutation would leave the entity without a full owner."""

    default_code = ErrorCode.ENTITY_NEEDS_COLLABORATOR


class ConflictError(_TypedError):
    default_code = ErrorCode.CONFLICT
    http_status = 409


class TransactionConflictError(RetryableError):
    """A serializable transaction was aborted by a concurrent writer."""

    http_status = 409

    def __init__(self, message_debug: str | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.CONFLICT,
            message_safe="Concurrent modification, retry the request",
            message_debug=message_debug,
            cause=cause,
            attributes={"reason": "serialization_failure"},
        )


class InternalError(RetryableError):
    """Storage, codec or sink failure not otherwise classified."""

    http_status = 500

    def __init__(
        self,
        message_safe: str = "Internal error",
        message_debug: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            code=ErrorCode.INTERNAL,
            message_safe=message_safe,
            message_debug=message_debug,
            cause=cause,
        )
