"""Tests for configuration module."""

import pytest
from ekicho.core.config import Settings, require_config, settings
from pydantic import ValidationError

VALID_SECRET = "x" * 32


class TestRequireConfig:
    """Tests for require_config function."""

    def test_require_config_passes_when_all_fields_present(self) -> None:
        """Test that require_config passes when all required fields are set."""
        require_config("FIREBASE_PROJECT_ID", "PROJECT_NAME")

    def test_require_config_raises_when_field_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that require_config raises ValueError when a field is None."""
        monkeypatch.setattr(settings, "FIREBASE_PROJECT_ID", None)

        with pytest.raises(ValueError, match="Required configuration missing: FIREBASE_PROJECT_ID"):
            require_config("FIREBASE_PROJECT_ID")

    @pytest.mark.parametrize("value", ["", "   "])
    def test_require_config_raises_when_field_blank(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        """Test that empty and whitespace-only strings count as missing."""
        monkeypatch.setattr(settings, "PROJECT_NAME", value)

        with pytest.raises(ValueError, match="Required configuration missing: PROJECT_NAME"):
            require_config("PROJECT_NAME")

    def test_require_config_raises_with_multiple_missing_fields(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that require_config lists all missing fields in error message."""
        monkeypatch.setattr(settings, "FIREBASE_PROJECT_ID", None)
        monkeypatch.setattr(settings, "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", None)

        with pytest.raises(ValueError, match="Required configuration missing:") as exc_info:
            require_config("FIREBASE_PROJECT_ID", "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")

        error_message = str(exc_info.value)
        assert "FIREBASE_PROJECT_ID" in error_message
        assert "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT" in error_message

    def test_require_config_raises_when_field_does_not_exist(self) -> None:
        """Test that require_config raises ValueError when field doesn't exist on settings."""
        with pytest.raises(ValueError, match="Required configuration missing: NONEXISTENT_FIELD"):
            require_config("NONEXISTENT_FIELD")


class TestDefaults:
    """Defaults that shape first sign-in and the local store."""

    def test_new_user_defaults(self) -> None:
        """New user documents default to Tokyo and the Apple provider tag."""
        fresh = Settings(SECRET_PII_HASH=VALID_SECRET)  # type: ignore[call-arg]

        assert fresh.DEFAULT_CITY_ID == "tokyo"
        assert fresh.DEFAULT_AUTH_PROVIDER == "apple"

    def test_migration_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Migration retries each write a bounded number of times."""
        monkeypatch.delenv("MIGRATION_RETRY_BACKOFF_SECONDS", raising=False)
        monkeypatch.delenv("MIGRATION_MAX_ATTEMPTS", raising=False)
        fresh = Settings(SECRET_PII_HASH=VALID_SECRET)  # type: ignore[call-arg]

        assert fresh.MIGRATION_MAX_ATTEMPTS == 3
        assert fresh.MIGRATION_RETRY_BACKOFF_SECONDS == 0.5

    def test_redis_url_read_from_secret_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """REDIS_URL is populated from SECRET_REDIS_URL."""
        monkeypatch.setenv("SECRET_REDIS_URL", "redis://cache:6380/2")

        fresh = Settings(SECRET_PII_HASH=VALID_SECRET)  # type: ignore[call-arg]

        assert fresh.REDIS_URL == "redis://cache:6380/2"


class TestParseIdentityAlgorithmsValidator:
    """Tests for parse_identity_algorithms field validator."""

    def test_parse_identity_algorithms_with_string(self) -> None:
        """Test comma-separated string is split into a list."""
        assert Settings.parse_identity_algorithms("RS256,ES256") == ["RS256", "ES256"]

    def test_parse_identity_algorithms_strips_whitespace(self) -> None:
        """Test whitespace around algorithms is removed."""
        assert Settings.parse_identity_algorithms("RS256, ES256 , PS256") == ["RS256", "ES256", "PS256"]

    def test_parse_identity_algorithms_with_list_input(self) -> None:
        """Test list input passes through unchanged (regression test)."""
        input_list = ["RS256"]
        result = Settings.parse_identity_algorithms(input_list)
        assert result is input_list


class TestMigrationMaxAttemptsValidator:
    """Tests for validate_migration_max_attempts."""

    def test_accepts_one(self) -> None:
        """A single attempt (no retry) is allowed."""
        assert Settings.validate_migration_max_attempts(1) == 1

    @pytest.mark.parametrize("value", [0, -1])
    def test_rejects_less_than_one(self, value: int) -> None:
        """Every write must be attempted at least once."""
        with pytest.raises(ValueError, match="MIGRATION_MAX_ATTEMPTS must be at least 1"):
            Settings.validate_migration_max_attempts(value)


class TestPiiHashSecretValidator:
    """Tests for the SECRET_PII_HASH validation."""

    def test_rejects_short_secret(self) -> None:
        """Secrets under 32 characters fail settings validation."""
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(SECRET_PII_HASH="too-short")  # type: ignore[call-arg]

    def test_rejects_placeholder_secret(self) -> None:
        """The placeholder from the example env file is rejected."""
        with pytest.raises(ValueError, match="placeholder"):
            Settings.validate_pii_hash_secret("REPLACE_ME_WITH_RANDOM_SECRET")


class TestValidateLogLevelValidator:
    """Tests for validate_log_level field validator."""

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    def test_validate_log_level_with_valid_levels(self, level: str) -> None:
        """Test validate_log_level accepts all valid log levels."""
        assert Settings.validate_log_level(level) == level

    def test_validate_log_level_normalizes_to_uppercase(self) -> None:
        """Test validate_log_level converts lowercase to uppercase."""
        assert Settings.validate_log_level("debug") == "DEBUG"
        assert Settings.validate_log_level("Warning") == "WARNING"

    @pytest.mark.parametrize("level", ["INVALID", "TRACE", ""])
    def test_validate_log_level_raises_on_invalid(self, level: str) -> None:
        """Test validate_log_level raises ValueError for invalid levels."""
        with pytest.raises(ValueError, match="Invalid LOG_LEVEL"):
            Settings.validate_log_level(level)
