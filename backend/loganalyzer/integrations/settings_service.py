"""
API-key management on top of the gateway's settings collection.
"""

from typing import Optional

from loganalyzer.errors import CredentialMissing
from loganalyzer.integrations.secret_store import DecryptionError, FernetSecretStore
from loganalyzer.models.schemas import Setting
from loganalyzer.storage.base import StorageGateway
from loganalyzer.utils.logger import get_logger

logger = get_logger(__name__)

API_KEY_SETTING = "deepseek_api_key"
NOT_CONFIGURED = "Not configured"
# Leaves room for the encrypted handle within the setting value limit.
MAX_API_KEY_LENGTH = 400


class SettingsService:
    """Reads and writes the text-generation credential, encrypted at rest."""

    def __init__(self, gateway: StorageGateway, secrets: FernetSecretStore):
        self._gateway = gateway
        self._secrets = secrets

    def get_api_key(self) -> str:
        """Return the plaintext credential or raise CredentialMissing."""
        setting = self._gateway.find_setting(API_KEY_SETTING)
        if setting is None or not setting.value:
            raise CredentialMissing("DeepSeek API key not configured. Please set it in Settings.")
        try:
            api_key = self._secrets.retrieve_secret(API_KEY_SETTING, setting.value)
        except DecryptionError as e:
            raise CredentialMissing(str(e)) from e
        if not api_key.strip():
            raise CredentialMissing("DeepSeek API key not configured. Please set it in Settings.")
        return api_key

    def find_api_key(self) -> Optional[str]:
        try:
            return self.get_api_key()
        except CredentialMissing:
            return None

    def masked_api_key(self) -> str:
        api_key = self.find_api_key()
        if api_key is None:
            return NOT_CONFIGURED
        if len(api_key) > 8:
            return api_key[:4] + "****" + api_key[-4:]
        return "****"

    def save_api_key(self, api_key: str) -> None:
        api_key = (api_key or "").strip()
        if not api_key:
            raise ValueError("API key cannot be empty")
        if len(api_key) > MAX_API_KEY_LENGTH:
            raise ValueError(f"API key must be at most {MAX_API_KEY_LENGTH} characters")
        handle = self._secrets.store_secret(API_KEY_SETTING, api_key)
        self._gateway.save_setting(Setting(key=API_KEY_SETTING, value=handle))
        logger.info("API key updated", extra={"action": "api_key_saved", "backend": self._gateway.backend_name})
