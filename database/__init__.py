"""
DeskRat persistence
Encrypted single-record credential file
"""

from .crypto import TokenEncryptor
from .token_store import CredentialRecord, TokenStore

__all__ = ['CredentialRecord', 'TokenEncryptor', 'TokenStore']
