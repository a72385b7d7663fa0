"""At-rest protection for prompt text stored in audit records."""

import logging
from abc import ABC, abstractmethod

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class PromptCipher(ABC):
    @abstractmethod
    def encrypt(self, text: str) -> str:
        pass

    @abstractmethod
    def decrypt(self, token: str) -> str:
        pass


class PlaintextCipher(PromptCipher):
    """No-op cipher used when no encryption key is configured."""

    def encrypt(self, text: str) -> str:
        return text

    def decrypt(self, token: str) -> str:
        return token


class FernetPromptCipher(PromptCipher):
    """Symmetric encryption of prompts with a Fernet key."""

    def __init__(self, key: str | bytes):
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, text: str) -> str:
        if not text:
            return ""
        return self._fernet.encrypt(text.encode()).decode()

    def decrypt(self, token: str) -> str:
        if not token:
            return ""
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("🔒 Failed to decrypt stored prompt: wrong key or corrupted record")
            raise


def cipher_from_key(key: str | None) -> PromptCipher:
    if key:
        return FernetPromptCipher(key)
    return PlaintextCipher()
