"""
AonyxEngine - Error taxonomy

Every failure the token lifecycle can produce has its own exception type.
Each one carries a short ``reason`` code that is safe to log: messages
never contain raw tokens or client secrets, only identifiers.
"""

from typing import Any, Dict, Iterable, Optional


class AonyxError(Exception):
    """Base class for all engine errors."""

    reason = "error"

    def __init__(self, message: str = "", /, **context: Any):
        super().__init__(message or self.reason)
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        base = super().__str__()
        if not self.context:
            return base
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{base} ({details})"


# ==================== STORAGE / CRYPTO ====================

class DecryptionError(AonyxError):
    """Ciphertext failed authentication or was malformed."""
    reason = "decrypt-error"


class NotFoundError(AonyxError):
    """No row matches the requested key."""
    reason = "not-found"


class StorageError(AonyxError):
    """The persistent store rejected a read or write."""
    reason = "storage-error"


class StateNotFoundError(NotFoundError):
    """
    No consumable state for (user_id, state).

    Raised for consumed, expired, forged or foreign states alike so the
    caller cannot tell which case occurred.
    """
    reason = "state-not-found"


# ==================== PROVIDERS ====================

class UnknownProviderError(AonyxError):
    reason = "provider-error"

    def __init__(self, provider: Optional[str]):
        super().__init__("unknown provider", provider=provider)
        self.provider = provider


class VerificationError(AonyxError):
    """The provider identity endpoint did not confirm the token."""
    reason = "verify-error"


class SubscriptionError(AonyxError):
    """The provider rejected an EventSub subscription request."""
    reason = "subscription-error"


# ==================== AUTHORIZATION PIPELINE ====================

class AuthFlowError(AonyxError):
    """Terminal failure of the authorization callback; the user must restart the flow."""
    reason = "auth-flow-error"


class UnauthenticatedError(AuthFlowError):
    reason = "unauthenticated"


class AuthorizationDeniedError(AuthFlowError):
    reason = "code-error"

    def __init__(self, error: Optional[str] = None, error_description: Optional[str] = None):
        super().__init__("authorization denied", error=error, error_description=error_description)
        self.error = error
        self.error_description = error_description


class InvalidStateError(AuthFlowError):
    reason = "invalid-state"


class TokenExchangeError(AuthFlowError):
    """
    Code exchange failed.

    ``payload`` holds the provider's error body when one was returned.
    Only its error/status/message fields end up in the string form.
    """
    reason = "token-req-error"

    def __init__(self, message: str = "token exchange failed", payload: Optional[Dict[str, Any]] = None):
        self.payload = payload or {}
        safe = {k: self.payload[k] for k in ("error", "status", "message") if k in self.payload}
        super().__init__(message, **safe)


class ScopeMismatchError(AuthFlowError):
    reason = "mismatch-scope"

    def __init__(self, requested: Iterable[str], granted: Iterable[str]):
        self.requested = sorted(set(requested))
        self.granted = sorted(set(granted))
        super().__init__("granted scopes differ from requested scopes",
                         requested=self.requested, granted=self.granted)


class IdentityVerificationError(AuthFlowError):
    reason = "identity-error"


class TokenPersistError(AuthFlowError):
    reason = "token-persist-error"


# ==================== TOKEN REFRESH ====================

class NoRefreshTokenError(AonyxError):
    """No usable refresh token; the user has to re-authenticate."""
    reason = "no-refresh-token"


class RefreshFailedError(AonyxError):
    reason = "refresh-error"

    def __init__(self, message: str = "refresh failed", payload: Optional[Dict[str, Any]] = None):
        self.payload = payload or {}
        safe = {k: self.payload[k] for k in ("error", "status", "message") if k in self.payload}
        super().__init__(message, **safe)
