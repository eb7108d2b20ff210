"""
AuthorizationPipeline - Callback OAuth (authorization code → tokens stockés)

Ordre strict, arrêt au premier échec:
    caller → code → state → provider → exchange → scopes → identité → stockage
"""

import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import (
    AuthorizationDeniedError,
    IdentityVerificationError,
    InvalidStateError,
    ScopeMismatchError,
    StateNotFoundError,
    StorageError,
    TokenExchangeError,
    TokenPersistError,
    UnauthenticatedError,
    VerificationError,
)
from core.state_manager import StateManager
from core.token_store import ACCESS_TOKEN, REFRESH_TOKEN, TokenData, TokenStore
from twitchapi.providers import ProviderRegistry
from twitchapi.scope_validator import scopes_match

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallbackParams:
    """Query string du callback provider."""
    code: Optional[str] = None
    state: Optional[str] = None
    scope: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationOutcome:
    user_id: str
    provider: str
    purpose: str
    provider_user_id: str


class AuthorizationPipeline:
    """Runs one OAuth callback to completion or to its first failure."""

    def __init__(self, states: StateManager, providers: ProviderRegistry, store: TokenStore):
        self.states = states
        self.providers = providers
        self.store = store

    async def handle_callback(self, caller_id: Optional[str], params: CallbackParams) -> AuthorizationOutcome:
        """
        Traite un callback OAuth.

        Args:
            caller_id: utilisateur authentifié (None si anonyme)
            params: code/state/scope/error renvoyés par le provider

        Returns:
            AuthorizationOutcome

        Raises:
            AuthFlowError (ou UnknownProviderError / TokenExchangeError)
        """
        if not caller_id:
            raise UnauthenticatedError("no authenticated caller")

        if params.error or not params.code:
            raise AuthorizationDeniedError(params.error, params.error_description)

        if not params.state:
            raise InvalidStateError("missing state", user_id=caller_id)

        try:
            auth_state = await self.states.use(caller_id, params.state)
        except StateNotFoundError as e:
            raise InvalidStateError("state not found", user_id=caller_id) from e

        provider = self.providers.get(auth_state.provider)
        purpose = auth_state.purpose

        # TokenExchangeError propagates as-is
        grant = await provider.exchange_code(params.code)
        if not grant.refresh_token:
            # A link is only usable with a refresh token
            raise TokenExchangeError("missing refresh_token", payload={"error": "missing refresh_token"})

        requested = params.scope if params.scope is not None else provider.scopes
        if not scopes_match(requested, grant.scopes):
            raise ScopeMismatchError(requested.split() if isinstance(requested, str) else requested,
                                     grant.scopes)

        try:
            provider_user_id = await provider.verify_token(grant.access_token)
        except VerificationError as e:
            raise IdentityVerificationError("token identity not confirmed", user_id=caller_id,
                                            provider=provider.name) from e

        # Refresh first, then access. Not atomic: a failure between the two
        # leaves a fresh refresh token next to the previous access token.
        try:
            await self.store.set(caller_id, provider.name, purpose, REFRESH_TOKEN,
                                 TokenData(grant.refresh_token, provider_user_id))
            await self.store.set(caller_id, provider.name, purpose, ACCESS_TOKEN,
                                 TokenData(grant.access_token, provider_user_id))
        except StorageError as e:
            raise TokenPersistError("failed to store tokens", user_id=caller_id,
                                    provider=provider.name) from e

        LOGGER.info(f"✅ login by {caller_id} ({provider.name}/{purpose})")
        return AuthorizationOutcome(
            user_id=caller_id,
            provider=provider.name,
            purpose=purpose,
            provider_user_id=provider_user_id,
        )
