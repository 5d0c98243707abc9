"""
Error taxonomy for the authentication core.

Every failure raised by the login flow, verification channels, vault PIN
gate and TOTP engine is an AuthError subclass. The API layer maps them to
JSON responses in main.py; messages are always safe to show to the user.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for all typed authentication failures."""

    status_code: int = 400
    error_code: str = "auth_error"
    default_message: str = "Authentication failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredential(AuthError):
    """Wrong password, PIN or code. Never names the field that was wrong."""

    status_code = 401
    error_code = "invalid_credential"
    default_message = "Invalid email or password"


class Expired(AuthError):
    """A verification code or push request aged out."""

    status_code = 410
    error_code = "expired"
    default_message = "This code has expired. Please request a new one."


class NotPermitted(AuthError):
    """The caller's credentials lack the scope needed (e.g. secret reveal)."""

    status_code = 403
    error_code = "not_permitted"
    default_message = "Not permitted to reveal this secret"


class Unavailable(AuthError):
    """A collaborator (dispatcher, credential store, secret store) is unreachable."""

    status_code = 503
    error_code = "unavailable"
    default_message = "Service temporarily unavailable. Please try again."


class RateLimited(AuthError):
    """Attempt limit or cooldown in effect."""

    status_code = 429
    error_code = "rate_limited"
    default_message = "Too many attempts. Please wait before trying again."

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class FlowStateError(AuthError):
    """Operation invoked from the wrong login step or on a closed request."""

    status_code = 409
    error_code = "invalid_state"
    default_message = "This step is not available right now. Please start again."
