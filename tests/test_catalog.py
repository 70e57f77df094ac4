"""Tests for the model catalog and credential resolution."""

import pytest

from omnichat.catalog import ModelCatalog, ModelInfo, ProviderFamily
from omnichat.credentials import CredentialResolver
from omnichat.errors import UnknownModelError


@pytest.fixture
def catalog():
    return ModelCatalog.default()


class TestCatalog:
    def test_families(self, catalog):
        assert catalog.get("gemini-2.5-flash").family == ProviderFamily.NATIVE_SESSION
        assert catalog.get("gpt-4o").family == ProviderFamily.DELTA_JSON
        assert catalog.get("deepseek-reasoner").family == ProviderFamily.DELTA_JSON
        assert catalog.get("llama-3.3-70b-versatile").family == ProviderFamily.DELTA_JSON
        assert catalog.get("claude-3-5-sonnet-20240620").family == ProviderFamily.BLOCK_DELTA

    def test_capability_flags(self, catalog):
        assert catalog.get("gemini-3-flash-preview").supports_grounding
        assert catalog.get("gemini-2.5-flash").supports_maps
        assert catalog.get("gemini-3-pro-preview").thinking_budget == 32768
        assert catalog.get("o1-mini").reasoning_only
        assert not catalog.get("gpt-4o").reasoning_only
        assert catalog.get("dall-e-3").is_image_generator
        assert catalog.get("veo-3.1-fast-generate-preview").is_video_generator
        assert catalog.get("veo-3.1-fast-generate-preview").is_media_generator
        assert not catalog.get("gpt-4o").is_media_generator

    def test_unknown_model(self, catalog):
        assert "gpt-99" not in catalog
        with pytest.raises(UnknownModelError, match="gpt-99"):
            catalog.get("gpt-99")

    def test_by_provider(self, catalog):
        assert {m.id for m in catalog.by_provider("DeepSeek")} == {
            "deepseek-chat", "deepseek-reasoner", "deepseek-coder",
        }

    def test_register_rejects_unknown_provider(self, catalog):
        with pytest.raises(ValueError):
            catalog.register(ModelInfo("x", "X", "Mistral"))

    def test_extra_models_from_config(self):
        catalog = ModelCatalog.default([
            {"id": "gpt-4.1", "provider": "OpenAI", "capabilities": ["text", "code"]},
            {"id": "broken"},
            {"id": "mistral-large", "provider": "Mistral"},
        ])
        added = catalog.get("gpt-4.1")
        assert added.name == "gpt-4.1"
        assert added.capabilities == ("text", "code")
        assert "broken" not in catalog
        assert "mistral-large" not in catalog


class TestCredentials:
    def test_user_key_wins(self):
        creds = CredentialResolver(user_keys={"openai": "user"}, admin_keys={"openai": "admin"})
        assert creds.resolve("OpenAI") == "user"

    def test_admin_fallback(self):
        creds = CredentialResolver(user_keys={"openai": "user"}, admin_keys={"Anthropic": "admin"})
        assert creds.resolve("Anthropic") == "admin"

    def test_blank_keys_are_missing(self):
        creds = CredentialResolver(user_keys={"groq": "  "}, admin_keys={"groq": ""})
        assert creds.resolve("Groq") is None

    def test_with_user_keys_keeps_admin(self):
        admin = CredentialResolver(admin_keys={"google": "admin-g"})
        user = admin.with_user_keys({"google": "mine"})
        assert user.resolve("Google") == "mine"
        assert admin.resolve("Google") == "admin-g"
        assert admin.with_user_keys(None).resolve("Google") == "admin-g"
