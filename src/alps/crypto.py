import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from alps.config import SETTINGS, Settings
from alps.exceptions import DecryptionError

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_HEX_LENGTH = 64


class TokenCipher:
    """AES-256-GCM cipher for stored access tokens.

    Ciphertexts are ``iv:data:tag`` with every part base64 encoded.
    """

    def __init__(self, key_hex: Optional[str]):
        if not key_hex:
            raise ValueError(
                "ALPS_ENCRYPTION_KEY is not set, generate one with: openssl rand -hex 32"
            )
        if len(key_hex) != KEY_HEX_LENGTH:
            raise ValueError(
                f"ALPS_ENCRYPTION_KEY must be {KEY_HEX_LENGTH} hex characters (32 bytes)"
            )
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as e:
            raise ValueError("ALPS_ENCRYPTION_KEY must be hex encoded") from e
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> "TokenCipher":
        return cls(settings.ALPS_ENCRYPTION_KEY)

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        data, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return ":".join(
            base64.b64encode(part).decode("ascii") for part in (iv, data, tag)
        )

    def decrypt(self, ciphertext: str) -> str:
        parts = ciphertext.split(":")
        if len(parts) != 3:
            raise DecryptionError("Invalid ciphertext format. Expected: iv:data:tag")

        try:
            iv, data, tag = (base64.b64decode(part, validate=True) for part in parts)
            plaintext = self._aesgcm.decrypt(iv, data + tag, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, binascii.Error, ValueError) as e:
            raise DecryptionError(f"Decryption failed: {e!r}") from e
