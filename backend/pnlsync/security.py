"""Encryption at rest for delegated Google OAuth tokens.

WHAT:
    `encrypt_secret` / `decrypt_secret` over a MultiFernet built from
    TOKEN_ENCRYPTION_KEY. The variable holds one key, or several separated by
    commas: the first encrypts, every key decrypts, so keys can be rotated
    without re-authorizing clients.

WHY:
    A copied database must not grant access to anyone's Drive. Plaintext
    tokens only exist in memory while a Google call is being made.

REFERENCES:
    - pnlsync/services/credential_store.py (only consumer)
    - https://cryptography.io/en/latest/fernet/#cryptography.fernet.MultiFernet
"""

import logging
from typing import List

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from pnlsync.utils.env import require_env

logger = logging.getLogger(__name__)

KEY_GENERATION_HINT = (
    "Generate one with: python -c \"from cryptography.fernet import Fernet; "
    "print(Fernet.generate_key().decode())\""
)


def _build_cipher(raw_keys: str) -> MultiFernet:
    keys: List[Fernet] = []
    for position, raw in enumerate(k.strip() for k in raw_keys.split(",")):
        if not raw:
            continue
        try:
            keys.append(Fernet(raw.encode("utf-8")))
        except ValueError as exc:
            raise RuntimeError(
                f"TOKEN_ENCRYPTION_KEY entry {position} is not a URL-safe base64-encoded 32-byte key. "
                + KEY_GENERATION_HINT
            ) from exc
    if not keys:
        raise RuntimeError("TOKEN_ENCRYPTION_KEY is empty. " + KEY_GENERATION_HINT)
    return MultiFernet(keys)


_cipher = _build_cipher(require_env("TOKEN_ENCRYPTION_KEY"))


def encrypt_secret(plaintext: str, *, context: str) -> str:
    """Encrypt a token with the primary key.

    `context` labels log lines (e.g. "client:<id>:refresh"); it is not part
    of the ciphertext.
    """
    if not plaintext:
        raise ValueError(f"Refusing to encrypt an empty secret ({context})")
    return _cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Decrypt a stored token with any configured key.

    Raises:
        ValueError: Empty value, or no key can decrypt it (key removed or
            data corrupted).
    """
    if not ciphertext:
        raise ValueError(f"No stored secret to decrypt ({context})")
    try:
        return _cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        logger.error("[TOKEN_DECRYPT] No configured key decrypts %s", context)
        raise ValueError(f"Unable to decrypt stored secret ({context})") from exc
