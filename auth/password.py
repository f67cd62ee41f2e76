"""
Password hashing and verification.

Uses bcrypt with automatic salting; the work factor comes from
``config.bcrypt_rounds``.
"""

from __future__ import annotations

import bcrypt

from config.settings import config


def hash_password(password: str) -> str:
    """Hash a password with bcrypt (auto-salted)."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=config.bcrypt_rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time comparison against a bcrypt hash; unusable hashes never match."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except (ValueError, TypeError):
        return False
