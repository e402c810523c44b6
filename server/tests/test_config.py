"""Tests for the Settings configuration."""

from annotator.config import Settings


class TestSettings:
    def test_cors_origin_list_single(self):
        s = Settings(cors_origins="http://localhost:5173")
        assert s.cors_origin_list == ["http://localhost:5173"]

    def test_cors_origin_list_multiple(self):
        s = Settings(cors_origins="http://localhost:5173, http://example.com , https://app.test")
        assert s.cors_origin_list == [
            "http://localhost:5173",
            "http://example.com",
            "https://app.test",
        ]

    def test_defaults(self):
        s = Settings(_env_file=None, google_ai_api_key="")
        assert s.google_ai_api_key == ""
        assert s.gemini_model == "gemini-2.5-flash"
        assert s.generation_timeout_seconds == 90.0
        assert s.default_soramimi_language == "zh-TW"
        assert s.catalog_timeout_seconds == 10.0
        assert s.catalog_page_size == 20

    def test_temperatures(self):
        s = Settings(_env_file=None)
        assert s.translation_temperature == 0.3
        assert s.furigana_temperature == 0.1
        assert s.soramimi_temperature == 0.7

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("GENERATION_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("DEFAULT_SORAMIMI_LANGUAGE", "en")
        s = Settings(_env_file=None)
        assert s.generation_timeout_seconds == 30.0
        assert s.default_soramimi_language == "en"
