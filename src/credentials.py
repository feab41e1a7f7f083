"""Provider API keys and backend token in the system keychain."""

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

__all__ = ["CredentialStore", "SERVICE_NAME", "API_TOKEN_ACCOUNT"]

logger = logging.getLogger(__name__)

SERVICE_NAME = "MelonAI Sync"
API_TOKEN_ACCOUNT = "api_token"


class CredentialStore:
    """Stores secrets in the OS keychain.

    Provider keys use the provider name as the account (``gemini``,
    ``gpt4-vision``, ``claude``); the backend token uses ``api_token``.
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        """Initialize credential store.

        Args:
            service_name: Service name for keychain entries
        """
        self.service_name = service_name

    def get(self, account: str) -> Optional[str]:
        """Read a secret, or None if it is missing or the keychain is unavailable."""
        try:
            return keyring.get_password(self.service_name, account)
        except KeyringError as e:
            logger.error(f"Failed to read {account} from keychain: {e}")
            return None

    def set(self, account: str, secret: str) -> bool:
        """Store a secret.

        Returns:
            True if stored successfully
        """
        try:
            keyring.set_password(self.service_name, account, secret)
            logger.info(f"Stored {account} in keychain")
            return True
        except KeyringError as e:
            logger.error(f"Failed to store {account}: {e}")
            return False

    def delete(self, account: str) -> bool:
        """Delete a secret.

        Returns:
            True if deleted (or didn't exist)
        """
        try:
            keyring.delete_password(self.service_name, account)
            logger.info(f"Deleted {account} from keychain")
            return True
        except PasswordDeleteError:
            return True
        except KeyringError as e:
            logger.error(f"Failed to delete {account}: {e}")
            return False

    def get_provider_key(self, provider: str) -> Optional[str]:
        return self.get(provider)

    def set_provider_key(self, provider: str, key: str) -> bool:
        return self.set(provider, key)

    def get_api_token(self) -> Optional[str]:
        return self.get(API_TOKEN_ACCOUNT)

    def set_api_token(self, token: str) -> bool:
        return self.set(API_TOKEN_ACCOUNT, token)
