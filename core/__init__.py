"""
Core - Cycle de vie des tokens OAuth

- state_manager.py : states CSRF à usage unique
- token_store.py : stockage chiffré + cache mémoire
- authorization.py : pipeline du callback OAuth
- message_bus.py : pub/sub interne (événements EventSub)
"""
