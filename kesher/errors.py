"""
Error taxonomy and operation results for Kesher.

Every registry operation returns an OperationResult rather than raising.
Transport adapters raise TransportError internally; the Instance converts
it to a failed OperationResult at its boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Structured error codes surfaced through the registry boundary."""

    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    BUSY = "busy"
    THROTTLED = "throttled"
    NOT_CONNECTED = "not_connected"
    INVALID_TARGET = "invalid_target"
    TRANSPORT_UNREACHABLE = "transport_unreachable"
    CREDENTIAL_STORE_FAILURE = "credential_store_failure"
    NOT_AVAILABLE = "not_available"
    LOGGED_OUT = "logged_out"
    INVALID_REQUEST = "invalid_request"


# =============================================================================
# Exceptions
# =============================================================================


class KesherError(Exception):
    """Base exception for Kesher errors."""

    def __init__(self, message: str, code: ErrorCode):
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.args[0]}"


class TransportError(KesherError):
    """
    Raised by transport adapters.

    Only UNREACHABLE, INVALID_TARGET and NOT_CONNECTED are expected here.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.TRANSPORT_UNREACHABLE,
        *,
        status_code: int | None = None,
    ):
        super().__init__(message, code)
        self.status_code = status_code


class CredentialStoreError(KesherError):
    """Raised when the credential backend fails. Callers log and continue."""

    def __init__(self, message: str, namespace: str):
        super().__init__(message, ErrorCode.CREDENTIAL_STORE_FAILURE)
        self.namespace = namespace


class InvalidTransitionError(Exception):
    """Raised when a state change does not follow a defined edge."""

    def __init__(self, current: Any, target: Any):
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition: {current} -> {target}")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True, slots=True)
class OperationError:
    """Structured error payload."""

    code: ErrorCode
    message: str
    retry_after: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


@dataclass(frozen=True, slots=True)
class OperationResult:
    """
    Result of a registry or instance operation.

    Attributes:
        success: Whether the operation succeeded
        data: Operation payload on success
        error: Structured error on failure
    """

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: OperationError | None = None

    @classmethod
    def ok(cls, **data: Any) -> OperationResult:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        *,
        retry_after: float | None = None,
        **data: Any,
    ) -> OperationResult:
        """Create a failed result."""
        return cls(
            success=False,
            data=data,
            error=OperationError(code=code, message=message, retry_after=retry_after),
        )

    @classmethod
    def from_exception(cls, error: KesherError) -> OperationResult:
        return cls.fail(error.code, str(error.args[0]))

    @property
    def code(self) -> ErrorCode | None:
        return self.error.code if self.error else None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, **self.data}
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


__all__ = [
    "CredentialStoreError",
    "ErrorCode",
    "InvalidTransitionError",
    "KesherError",
    "OperationError",
    "OperationResult",
    "TransportError",
]
