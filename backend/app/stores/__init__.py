"""Persistence stores for the authentication subsystem"""

from app.stores.base import AccountStore, LoginAttemptStore, RevocationStore, ResetTokenStore, Stores
from app.stores.records import Account, LoginAttempt, RevokedToken, ResetToken, RevocationReason

__all__ = [
    "AccountStore", "LoginAttemptStore", "RevocationStore", "ResetTokenStore", "Stores",
    "Account", "LoginAttempt", "RevokedToken", "ResetToken", "RevocationReason",
]
