"""
Token encryption — encrypt / decrypt OAuth secrets at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key is loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

If no key is configured, encryption is **disabled** and tokens are stored
as plaintext (with a startup warning).  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

# Fields of a token record / credentials blob that never hit the DB in clear
SECRET_FIELDS = ("access_token", "refresh_token", "client_secret")

_fernet = None
_initialised = False
_enabled = False


def _init_fernet() -> None:
    """Lazy-initialise the Fernet cipher once."""
    global _fernet, _enabled, _initialised

    _initialised = True

    key = config.token_encryption_key
    if not key:
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — OAuth tokens will be stored as plaintext."
        )
        _enabled = False
        return

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
        _enabled = True
        logger.info("Token encryption enabled (Fernet/AES-128-CBC)")
    except ValueError as exc:
        logger.error("Failed to initialise Fernet with provided key: %s", exc)
        _enabled = False


def encrypt_token(plaintext: str) -> str:
    """
    Encrypt a token string for database storage.

    Returns the Fernet ciphertext (URL-safe base64).
    If encryption is disabled, returns the plaintext unchanged.
    """
    if not _initialised:
        _init_fernet()

    if not _enabled or _fernet is None or not plaintext:
        return plaintext

    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: str) -> str:
    """
    Decrypt a token string read from the database.

    Values stored before encryption was enabled are not valid Fernet
    tokens and are returned as-is.
    """
    if not _initialised:
        _init_fernet()

    if not _enabled or _fernet is None or not ciphertext:
        return ciphertext

    try:
        return _fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def encrypt_fields(data: Dict[str, Any], fields: Iterable[str] = SECRET_FIELDS) -> Dict[str, Any]:
    """Return a copy of *data* with the secret fields encrypted."""
    out = dict(data)
    for name in fields:
        if isinstance(out.get(name), str):
            out[name] = encrypt_token(out[name])
    return out


def decrypt_fields(data: Dict[str, Any], fields: Iterable[str] = SECRET_FIELDS) -> Dict[str, Any]:
    """Return a copy of *data* with the secret fields decrypted."""
    out = dict(data)
    for name in fields:
        if isinstance(out.get(name), str):
            out[name] = decrypt_token(out[name])
    return out


def is_encryption_enabled() -> bool:
    """Check whether token encryption is active."""
    if not _initialised:
        _init_fernet()
    return _enabled
