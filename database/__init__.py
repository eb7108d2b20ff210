"""
AonyxEngine Database Module
SQLite database with encrypted OAuth tokens
"""

from .crypto import TokenCipher, generate_key, load_key
from .manager import DatabaseManager

__all__ = ['TokenCipher', 'DatabaseManager', 'generate_key', 'load_key']
