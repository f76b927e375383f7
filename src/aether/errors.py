"""Error handling module for Aether.

This module defines error codes, exception classes, and response models.
Every failure reaching the CLI boundary is an AetherError subclass, rendered
either as a human-readable ``Error: <message>`` line or as JSON.

Error Response Format:
{
    "status": "error",
    "error": {
        "code": "SERVICE_NOT_FOUND",
        "message": "Service 'redis' not found in namespace 'aether-ws1'"
    }
}

Usage:
    from aether.errors import ConfigError, ServiceNotFoundError

    raise ConfigError("aether.toml not found in repo")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Stable error codes for structured output."""

    CONFIG_ERROR = "CONFIG_ERROR"
    BACKEND_ERROR = "BACKEND_ERROR"
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"
    PORT_ALLOCATION_ERROR = "PORT_ALLOCATION_ERROR"
    CONTEXT_INJECTION_ERROR = "CONTEXT_INJECTION_ERROR"
    STATE_ERROR = "STATE_ERROR"
    JJ_FAILED = "JJ_FAILED"
    JJ_NOT_FOUND = "JJ_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    status: str = "error"
    error: ErrorDetail


class AetherError(Exception):
    """Base exception for Aether.

    All aether-specific exceptions should inherit from this class.
    This enables centralized exception handling at the CLI boundary.

    Attributes:
        code: The error code from ErrorCode enum.
        message: Human-readable error message.
        exit_code: Process exit status to use when this error ends a command.
    """

    def __init__(self, code: ErrorCode, message: str, exit_code: int = 1) -> None:
        self.code = code
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class ConfigError(AetherError):
    """Malformed or missing configuration or command arguments."""

    def __init__(self, message: str = "Invalid configuration") -> None:
        super().__init__(ErrorCode.CONFIG_ERROR, message)


class BackendError(AetherError):
    """Container engine call failed."""

    def __init__(self, message: str = "Backend operation failed") -> None:
        super().__init__(ErrorCode.BACKEND_ERROR, message)


class ServiceNotFoundError(BackendError):
    """No container matches the (namespace, service) label pair."""

    def __init__(self, service: str, namespace: str) -> None:
        super().__init__(f"Service '{service}' not found in namespace '{namespace}'")
        self.code = ErrorCode.SERVICE_NOT_FOUND
        self.service = service
        self.namespace = namespace


class PortAllocationError(AetherError):
    """Binding a probe listener failed."""

    def __init__(self, message: str = "Port allocation failed") -> None:
        super().__init__(ErrorCode.PORT_ALLOCATION_ERROR, message)


class ContextInjectionError(AetherError):
    """Template is invalid or references an undefined path."""

    def __init__(self, message: str = "Context injection failed") -> None:
        super().__init__(ErrorCode.CONTEXT_INJECTION_ERROR, message)


class StateError(AetherError):
    """Registry I/O, lock, or document failure."""

    def __init__(self, message: str = "State management error") -> None:
        super().__init__(ErrorCode.STATE_ERROR, message)


class DelegationError(AetherError):
    """The jj executable failed or could not be started.

    Attributes:
        stderr: Captured standard error of the jj process.
        returncode: jj exit status, -1 when it never ran.
    """

    def __init__(
        self,
        message: str,
        stderr: str = "",
        returncode: int = -1,
        not_found: bool = False,
    ) -> None:
        if not_found:
            super().__init__(ErrorCode.JJ_NOT_FOUND, message)
        else:
            super().__init__(
                ErrorCode.JJ_FAILED, f"jj command failed: {message} (exit code: {returncode})"
            )
        self.stderr = stderr
        self.returncode = returncode
