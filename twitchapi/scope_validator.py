"""
🔐 Scope Validator - Compare requested and granted OAuth scopes

Twitch echoes scopes as a JSON list, Discord as a space-delimited string,
and the callback query carries them space-delimited too. Everything is
normalised to a set before comparing.
"""

import logging
from typing import Iterable, List, Optional, Set, Union

logger = logging.getLogger(__name__)

ScopeInput = Union[str, Iterable[str], None]


def normalize_scopes(scopes: ScopeInput) -> Set[str]:
    """
    Normalise scopes into a set.

    Args:
        scopes: "a b c", ["a", "b"], or None

    Returns:
        Set of non-empty scope names
    """
    if scopes is None:
        return set()
    if isinstance(scopes, str):
        return set(scopes.split())
    result = set()
    for scope in scopes:
        result.update(str(scope).split())
    return result


def scope_list(scopes: ScopeInput) -> List[str]:
    """Sorted list form, for payloads and logs."""
    return sorted(normalize_scopes(scopes))


def missing_scopes(requested: ScopeInput, granted: ScopeInput) -> Set[str]:
    """Scopes that were requested but not granted."""
    return normalize_scopes(requested) - normalize_scopes(granted)


def scopes_match(requested: ScopeInput, granted: ScopeInput) -> bool:
    """
    Set-equality of two scope collections.

    Order and duplicates do not matter:
        scopes_match("a b", ["b", "a"])  -> True
        scopes_match("a b", ["a"])       -> False
    """
    wanted = normalize_scopes(requested)
    got = normalize_scopes(granted)
    if wanted == got:
        return True

    missing = missing_scopes(wanted, got)
    extra = got - wanted
    if missing:
        logger.debug(f"Scopes manquants: {sorted(missing)}")
    if extra:
        logger.debug(f"Scopes en trop: {sorted(extra)}")
    return False


def join_scopes(scopes: Optional[Iterable[str]]) -> str:
    """Space-delimited form used in authorize URLs."""
    return " ".join(scopes or [])
