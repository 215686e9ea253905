"""Registry authentication module."""

from archpush.registry.auth import (
    AuthSession,
    Credential,
    authenticate,
    authenticate_with_retry,
)

__all__ = ["AuthSession", "Credential", "authenticate", "authenticate_with_retry"]
