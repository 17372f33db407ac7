"""
Application-layer encryption for MRNs kept in refresh history.

MRNs are the join key to the FHIR server and count as PHI; the refresh run
table stores them Fernet-encrypted with a key from the environment.
"""

from __future__ import annotations

from cryptography.fernet import Fernet

from riskservice.config import settings


class EncryptionService:
    """Wraps Fernet symmetric encryption for PHI fields."""

    def __init__(self, key: str | bytes | None = None):
        raw_key = key or settings.PHI_ENCRYPTION_KEY
        if not raw_key:
            # Development only: history written with a generated key can't be
            # read after a restart.
            raw_key = Fernet.generate_key()
        self._fernet = Fernet(raw_key.encode() if isinstance(raw_key, str) else raw_key)

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext:
            return ""
        return self._fernet.decrypt(ciphertext.encode()).decode()
