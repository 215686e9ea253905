"""Error taxonomy for archpush.

Every error carries a stable ``code`` string so that callers (the CLI,
run history, reports) can handle failures programmatically. Run-level
errors abort the whole run; platform-level errors are recorded in that
platform's publish result and iteration continues.
"""

from __future__ import annotations

from enum import Enum

from archpush.types import Platform

PROVISION_ERROR = "provision_error"
EMULATION_ERROR = "emulation_error"
BUILDER_ERROR = "builder_error"
AUTH_ERROR = "auth_error"
BUILD_ERROR = "build_failed"
PUSH_ERROR = "push_failed"
COMMAND_ERROR = "command_error"
DEFINITION_ERROR = "definition_error"
TRIGGER_ERROR = "trigger_error"
CACHE_ERROR = "cache_error"


class AuthFailureReason(str, Enum):
    """Why a registry login failed."""

    INVALID_CREDENTIALS = "invalid_credentials"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"


class ArchpushError(Exception):
    """Base error for all archpush operations."""

    def __init__(self, message: str, code: str = "archpush_error") -> None:
        super().__init__(message)
        self.code = code


class CommandError(ArchpushError):
    """Raised when an external command cannot be run or exits non-zero."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        output: str = "",
        code: str = COMMAND_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code
        self.output = output


class ProvisionError(ArchpushError):
    """Raised when swap allocation, remount or daemon restart fails."""

    def __init__(self, message: str, step: str, code: str = PROVISION_ERROR) -> None:
        super().__init__(message, code=code)
        self.step = step


class EmulationError(ArchpushError):
    """Raised when one or more platforms cannot be emulated on this host."""

    def __init__(
        self,
        platforms: list[Platform],
        detail: str = "",
        code: str = EMULATION_ERROR,
    ) -> None:
        names = ", ".join(p.value for p in platforms)
        message = f"Cannot emulate platform(s): {names}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message, code=code)
        self.platforms = platforms


class BuilderError(ArchpushError):
    """Raised when no multi-platform builder can be created or attached."""

    def __init__(self, message: str, code: str = BUILDER_ERROR) -> None:
        super().__init__(message, code=code)


class AuthError(ArchpushError):
    """Raised when registry authentication fails."""

    def __init__(
        self,
        message: str,
        reason: AuthFailureReason,
        code: str = AUTH_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.reason = reason

    @property
    def retryable(self) -> bool:
        """Only rate limiting is worth retrying."""
        return self.reason is AuthFailureReason.RATE_LIMITED


class BuildError(ArchpushError):
    """Raised when building one platform's image fails."""

    def __init__(
        self,
        message: str,
        platform: Platform,
        exit_code: int | None = None,
        log_path: str | None = None,
        code: str = BUILD_ERROR,
    ) -> None:
        super().__init__(message, code=code)
        self.platform = platform
        self.exit_code = exit_code
        self.log_path = log_path


class PushError(BuildError):
    """Raised when the image was built but pushing it to the registry failed."""

    def __init__(
        self,
        message: str,
        platform: Platform,
        exit_code: int | None = None,
        log_path: str | None = None,
        code: str = PUSH_ERROR,
    ) -> None:
        super().__init__(
            message,
            platform=platform,
            exit_code=exit_code,
            log_path=log_path,
            code=code,
        )


class DefinitionError(ArchpushError):
    """Raised when a run definition cannot be loaded."""

    def __init__(self, message: str, code: str = DEFINITION_ERROR) -> None:
        super().__init__(message, code=code)


class TriggerError(ArchpushError):
    """Raised when the triggering event or reference is not acceptable."""

    def __init__(self, message: str, code: str = TRIGGER_ERROR) -> None:
        super().__init__(message, code=code)


class CacheError(ArchpushError):
    """Raised when the cache store cannot be prepared or updated."""

    def __init__(self, message: str, code: str = CACHE_ERROR) -> None:
        super().__init__(message, code=code)


__all__ = [
    "AUTH_ERROR",
    "BUILDER_ERROR",
    "BUILD_ERROR",
    "CACHE_ERROR",
    "COMMAND_ERROR",
    "DEFINITION_ERROR",
    "EMULATION_ERROR",
    "PROVISION_ERROR",
    "PUSH_ERROR",
    "TRIGGER_ERROR",
    "ArchpushError",
    "AuthError",
    "AuthFailureReason",
    "BuildError",
    "BuilderError",
    "CacheError",
    "CommandError",
    "DefinitionError",
    "EmulationError",
    "ProvisionError",
    "PushError",
    "TriggerError",
]
