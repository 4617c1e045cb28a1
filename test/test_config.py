"""
Tests for application settings.
"""

import pytest
from pydantic import ValidationError

from app.config import Settings, get_settings


class TestSettings:
    def test_webhook_and_pipeline_defaults(self) -> None:
        fields = Settings.model_fields
        assert fields["webhook_signature_header"].default == "x-vapi-signature"
        assert fields["idempotency_bucket_seconds"].default == 60
        assert fields["qualification_threshold"].default == 6
        assert fields["transcript_base_delay_seconds"].default == 5
        assert fields["transcript_max_attempts"].default == 6

    def test_environment_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_ENV", "prod")
        monkeypatch.setenv("QUALIFICATION_THRESHOLD", "8")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = get_settings()

        assert settings.is_production
        assert settings.qualification_threshold == 8
        assert settings.log_level == "DEBUG"

    def test_cors_origins_list(self) -> None:
        settings = Settings(cors_origins="https://a.example, https://b.example,,")
        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"qualification_threshold": 11},
            {"idempotency_bucket_seconds": 0},
            {"transcript_max_attempts": 0},
            {"app_env": "staging"},
        ],
    )
    def test_invalid_values_rejected(self, overrides: dict) -> None:
        with pytest.raises(ValidationError):
            Settings(**overrides)
