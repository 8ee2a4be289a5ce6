"""
Token encryption — encrypt / decrypt provider tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key normally comes from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

If no key is configured, encryption is **disabled** and tokens are stored
as plaintext (with a startup warning).  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class TokenCipher:
    """Fernet wrapper; a pass-through when constructed without a key."""

    def __init__(self, key: Optional[str] = None):
        self._fernet: Optional[Fernet] = None
        if not key:
            logger.warning(
                "TOKEN_ENCRYPTION_KEY not set — provider tokens will be stored as plaintext. "
                "Generate a key: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )
            return
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        logger.info("Token encryption enabled (Fernet/AES-128-CBC)")

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        """Return the Fernet ciphertext (URL-safe base64), or the input when disabled."""
        if self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored token.

        Rows written before encryption was enabled are not valid Fernet
        tokens and are returned as-is.
        """
        if self._fernet is None:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            logger.debug("Stored token is not Fernet ciphertext; treating as plaintext")
            return ciphertext
