"""Ledger configuration using pydantic-settings.

Values resolve in order: constructor arguments, the system keychain
(credentials only), environment variables, then ``.env``.
"""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Settings source that reads oracle API keys from ``keyring``.

    Fields outside :data:`~services.credential_manager.CREDENTIAL_KEYS`
    are never looked up and fall through to the later sources.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        key = field_name.upper()
        value = get_credential(key) if key in CREDENTIAL_KEYS else None
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        found: dict[str, Any] = {}
        for name, info in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(info, name)
            if value is not None:
                found[key] = value
        return found


class Settings(BaseSettings):
    """Ledger settings loaded from the keychain and environment."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        keychain = KeychainSettingsSource(settings_cls)
        return init_settings, keychain, env_settings, dotenv_settings, file_secret_settings

    # Storage
    DATABASE_URL: str = "sqlite:///./ledger.db"

    # CoinGecko demo API key (optional - keyless public API otherwise)
    COINGECKO_API_KEY: str = ""

    # Price backfill: oracle quota and default lookback
    PRICE_BACKFILL_MAX_CALLS: int = 5
    PRICE_BACKFILL_WINDOW_SECONDS: float = 60.0
    PRICE_BACKFILL_DAYS: int = 365

    # Daily account snapshots: regenerate after each write, longest backfill range
    SNAPSHOT_ON_WRITE: bool = True
    SNAPSHOT_BACKFILL_MAX_DAYS: int = 366

    # Sync error recovery
    SYNC_RETRY_MAX_ATTEMPTS: int = 3
    SYNC_RETRY_BASE_DELAY_SECONDS: float = 1.0
    SYNC_ERROR_RETENTION_DAYS: int = 30

    # Run a report-only reconciliation sweep when the app starts
    RECONCILE_ON_STARTUP: bool = False

    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @field_validator("PRICE_BACKFILL_MAX_CALLS", "SYNC_RETRY_MAX_ATTEMPTS", "SNAPSHOT_BACKFILL_MAX_DAYS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero or negative call/attempt budgets."""
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize LOG_LEVEL to an uppercase logging level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a logging level name, got {v!r}")
        return level


settings = Settings()
