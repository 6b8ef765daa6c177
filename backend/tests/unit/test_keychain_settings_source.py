"""Tests for KeychainSettingsSource and the rest of Settings."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from config import KeychainSettingsSource, Settings
from services.credential_manager import CREDENTIAL_KEYS

# Environment variables that would interfere with Settings defaults if
# set in the test runner's shell.
_ENV_VARS_TO_CLEAR = {
    "DATABASE_URL",
    "ENVIRONMENT",
    "DEBUG",
    "LOG_LEVEL",
    "PRICE_BACKFILL_MAX_CALLS",
    "SYNC_RETRY_MAX_ATTEMPTS",
    "RECONCILE_ON_STARTUP",
    *CREDENTIAL_KEYS,
}


def _clean_env():
    return {k: v for k, v in os.environ.items() if k not in _ENV_VARS_TO_CLEAR}


class TestKeychainSettingsSource:
    def test_keychain_value_overrides_default(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value="keychain-value"),
        ):
            s = Settings(_env_file=None)
            assert s.COINGECKO_API_KEY == "keychain-value"

    def test_init_value_overrides_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value="keychain-value"),
        ):
            s = Settings(_env_file=None, COINGECKO_API_KEY="init-value")
            assert s.COINGECKO_API_KEY == "init-value"

    def test_non_credential_fields_skip_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.return_value = "should-not-be-used"
            s = Settings(_env_file=None)
            assert s.DATABASE_URL == "sqlite:///./ledger.db"
            called_keys = {call.args[0] for call in mock_get.call_args_list}
            assert called_keys == {"COINGECKO_API_KEY"}

    def test_env_fallback_when_keychain_empty(self):
        env = _clean_env()
        env["COINGECKO_API_KEY"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential", return_value=None),
        ):
            assert Settings(_env_file=None).COINGECKO_API_KEY == "from-env"

    def test_keychain_overrides_env_var(self):
        env = _clean_env()
        env["COINGECKO_API_KEY"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential", return_value="from-keychain"),
        ):
            assert Settings(_env_file=None).COINGECKO_API_KEY == "from-keychain"

    def test_source_is_second_in_priority_chain(self):
        sources = Settings.settings_customise_sources(
            Settings,
            init_settings=object(),
            env_settings=object(),
            dotenv_settings=object(),
            file_secret_settings=object(),
        )
        assert [type(s) for s in sources].index(KeychainSettingsSource) == 1


class TestLedgerSettings:
    def test_defaults(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
        assert s.PRICE_BACKFILL_MAX_CALLS == 5
        assert s.PRICE_BACKFILL_WINDOW_SECONDS == 60.0
        assert s.SYNC_RETRY_MAX_ATTEMPTS == 3
        assert s.SYNC_ERROR_RETENTION_DAYS == 30
        assert s.RECONCILE_ON_STARTUP is False

    @pytest.mark.parametrize("field", ["PRICE_BACKFILL_MAX_CALLS", "SYNC_RETRY_MAX_ATTEMPTS"])
    def test_budgets_must_be_positive(self, field):
        env = _clean_env()
        env[field] = "0"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential", return_value=None),
        ):
            with pytest.raises(ValidationError, match=field):
                Settings(_env_file=None)
