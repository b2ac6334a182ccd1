"""Tests for KeychainSettingsSource integration in config.py."""

import os
from unittest.mock import patch

from config import KeychainSettingsSource, Settings
from services.credential_manager import CREDENTIAL_KEYS

# Environment variables that would interfere with Settings defaults if
# set in the test runner's shell.  We clear them for isolation.
_ENV_VARS_TO_CLEAR = {
    "DATABASE_URL",
    "APP_BASE_URL",
    "ENVIRONMENT",
    "DEBUG",
    "LOG_LEVEL",
    "XERO_REDIRECT_URI",
    "TINK_REDIRECT_URI",
    *CREDENTIAL_KEYS,
}


def _clean_env():
    """Return a dict suitable for ``os.environ`` patching that removes
    any variables the Settings class reads."""
    return {k: v for k, v in os.environ.items() if k not in _ENV_VARS_TO_CLEAR}


class TestKeychainSettingsSource:
    """Test the KeychainSettingsSource pydantic-settings source."""

    def test_keychain_value_overrides_default(self):
        """A credential in keychain should override the empty-string default."""
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: (
                "keychain-value" if key == "XERO_CLIENT_ID" else None
            )
            s = Settings(_env_file=None)
            assert s.XERO_CLIENT_ID == "keychain-value"

    def test_init_value_overrides_keychain(self):
        """An explicit init value should override keychain."""
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.return_value = "keychain-value"
            s = Settings(_env_file=None, XERO_CLIENT_ID="init-value")
            assert s.XERO_CLIENT_ID == "init-value"

    def test_non_credential_fields_skip_keychain(self):
        """Fields not in CREDENTIAL_KEYS should not hit keychain."""
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.return_value = "should-not-be-used"
            s = Settings(_env_file=None)
            assert s.DATABASE_URL == "sqlite:///./bank_sync.db"
            assert s.XERO_REDIRECT_URI == ""
            called_keys = [call.args[0] for call in mock_get.call_args_list]
            assert "DATABASE_URL" not in called_keys
            assert "XERO_REDIRECT_URI" not in called_keys
            assert "LOG_LEVEL" not in called_keys

    def test_env_fallback_when_keychain_empty(self):
        """When keychain returns None, the .env/default chain still works."""
        env = _clean_env()
        env["TINK_CLIENT_ID"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
            assert s.XERO_CLIENT_SECRET == ""
            assert s.TINK_CLIENT_ID == "from-env"

    def test_keychain_overrides_env_var(self):
        """Keychain has higher priority than env vars in the source chain."""
        env = _clean_env()
        env["XERO_WEBHOOK_KEY"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: (
                "from-keychain" if key == "XERO_WEBHOOK_KEY" else None
            )
            s = Settings(_env_file=None)
            assert s.XERO_WEBHOOK_KEY == "from-keychain"

    def test_source_is_in_priority_chain(self):
        """KeychainSettingsSource sits right after init values."""
        sources = Settings.settings_customise_sources(
            Settings,
            init_settings=object(),
            env_settings=object(),
            dotenv_settings=object(),
            file_secret_settings=object(),
        )
        source_types = [type(s) for s in sources]
        assert source_types.index(KeychainSettingsSource) == 1


class TestSettingsDefaults:
    def test_sync_and_http_defaults(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None)
        assert s.SYNC_DEFAULT_DAYS_BACK == 90
        assert s.SYNC_OVERLAP_HOURS == 24
        assert s.SYNC_MAX_CONCURRENT_ACCOUNTS == 3
        assert s.HTTP_MAX_RETRIES == 3
        assert s.HTTP_DEFAULT_RETRY_AFTER_SECONDS == 60.0

    def test_app_base_url_trailing_slash_stripped(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            s = Settings(_env_file=None, APP_BASE_URL="https://app.example.com/")
        assert s.APP_BASE_URL == "https://app.example.com"
