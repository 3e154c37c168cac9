"""Tests for configuration validation."""

from unittest.mock import patch

import pytest

from regis_client.config.settings import Settings
from regis_client.exceptions import ConfigurationError


class TestSettingsValidation:
    """Tests for Settings.validate()."""

    def test_defaults_are_valid(self):
        with patch.object(Settings, "API_BASE_URL", "http://localhost:3000/api"), \
                patch.object(Settings, "LANGUAGE", "en"):
            Settings.validate()

    @pytest.mark.parametrize(
        "name, value",
        [
            ("API_BASE_URL", "localhost:3000/api"),
            ("API_BASE_URL", "ftp://example.com"),
            ("REQUEST_TIMEOUT_SECONDS", 0),
            ("RETRY_MAX_ATTEMPTS", 0),
            ("RETRY_BASE_DELAY_MS", -1),
            ("RETRY_JITTER_MS", -5),
            ("OFFLINE_QUEUE_MAX_RETRIES", 0),
            ("LANGUAGE", "de"),
        ],
    )
    def test_invalid_values(self, name, value):
        """Test that each invalid setting raises ConfigurationError."""
        with patch.object(Settings, "API_BASE_URL", "http://localhost:3000/api"), \
                patch.object(Settings, "LANGUAGE", "en"), \
                patch.object(Settings, name, value):
            with pytest.raises(ConfigurationError):
                Settings.validate()

    def test_retry_defaults(self):
        assert Settings.RETRYABLE_STATUSES == frozenset({429, 502, 503, 504})
