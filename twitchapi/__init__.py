"""
twitchapi/
==========

Tout ce qui parle aux providers OAuth et à l'API EventSub.

Organisation:
- providers.py : ProviderRegistry (Twitch, Discord), exchange/refresh/verify
- scope_validator.py : Comparaison scopes demandés / accordés
- auth_manager.py : Access token valide par utilisateur (refresh transparent)
- subscriptions.py : Fan-out des subscriptions EventSub sur tout le roster
- transports/ : Client WebSocket EventSub
"""

from twitchapi.auth_manager import AuthManager
from twitchapi.providers import OAuthProvider, ProviderRegistry, TokenGrant

__all__ = ["AuthManager", "OAuthProvider", "ProviderRegistry", "TokenGrant"]
