"""Encryption at rest for the OAuth tokens in calendar_connections.

Keys come from ``CALENDAR_TOKEN_ENCRYPTION_KEY`` as a comma-separated list of
Fernet keys. The first key encrypts; every key is tried when decrypting, so a
new key can be prepended and the old one dropped once tokens were rewritten.
"""

import os
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

KEY_ENV_VAR = "CALENDAR_TOKEN_ENCRYPTION_KEY"


class TokenDecryptionError(Exception):
    """A stored token could not be decrypted with any configured key."""


@lru_cache(maxsize=4)
def _cipher(keys: str) -> MultiFernet:
    fernets = [Fernet(key.strip().encode()) for key in keys.split(",") if key.strip()]
    if not fernets:
        raise ValueError(f"{KEY_ENV_VAR} does not contain any keys")
    return MultiFernet(fernets)


def get_cipher() -> MultiFernet:
    return _cipher(os.environ[KEY_ENV_VAR])


def encrypt_token(token: Optional[str]) -> Optional[str]:
    if token is None:
        return None
    return get_cipher().encrypt(token.encode()).decode()


def decrypt_token(token: Optional[str]) -> Optional[str]:
    if token is None:
        return None
    try:
        return get_cipher().decrypt(token.encode()).decode()
    except InvalidToken as e:
        raise TokenDecryptionError(
            f"Stored calendar token could not be decrypted; check {KEY_ENV_VAR}"
        ) from e
