"""Tests for keychain credential storage."""

from unittest.mock import patch

from keyring.errors import KeyringError, PasswordDeleteError

from src.credentials import API_TOKEN_ACCOUNT, SERVICE_NAME, CredentialStore


class TestCredentialStore:
    def setup_method(self):
        self.store = CredentialStore()

    @patch("src.credentials.keyring")
    def test_get_provider_key(self, mock_keyring):
        mock_keyring.get_password.return_value = "AIza-0123456789"

        assert self.store.get_provider_key("gemini") == "AIza-0123456789"
        mock_keyring.get_password.assert_called_once_with(SERVICE_NAME, "gemini")

    @patch("src.credentials.keyring")
    def test_get_handles_keyring_error(self, mock_keyring):
        mock_keyring.get_password.side_effect = KeyringError("locked")

        assert self.store.get_api_token() is None

    @patch("src.credentials.keyring")
    def test_set_api_token(self, mock_keyring):
        assert self.store.set_api_token("tok-123") is True
        mock_keyring.set_password.assert_called_once_with(SERVICE_NAME, API_TOKEN_ACCOUNT, "tok-123")

    @patch("src.credentials.keyring")
    def test_set_failure(self, mock_keyring):
        mock_keyring.set_password.side_effect = KeyringError("no backend")

        assert self.store.set_provider_key("claude", "sk-ant-123") is False

    @patch("src.credentials.keyring")
    def test_delete_missing_is_ok(self, mock_keyring):
        mock_keyring.delete_password.side_effect = PasswordDeleteError("not found")

        assert self.store.delete("claude") is True

    @patch("src.credentials.keyring")
    def test_delete_failure(self, mock_keyring):
        mock_keyring.delete_password.side_effect = KeyringError("locked")

        assert self.store.delete("claude") is False

    def test_custom_service_name(self):
        assert CredentialStore("MelonAI Test").service_name == "MelonAI Test"
