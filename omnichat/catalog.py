"""
Model catalog — which backend serves a model and what it can do.

Each model belongs to a provider; each provider speaks one wire protocol
family. The router uses this table as its single dispatch point, so adding
a model is a data change here (or under `catalog.models` in config.yaml).

Capability flags:
    search            → Google Search grounding
    maps              → Google Maps grounding
    thinking          → extended thinking budget
    reasoning_only    → no temperature/top_p, no system role
    image_generation  → single request, returns an image reference
    video_generation  → request then poll, returns a video reference
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from omnichat.errors import UnknownModelError

logger = logging.getLogger(__name__)


class ProviderFamily(str, Enum):
    """Streaming wire protocol families."""
    DELTA_JSON = "delta_json"          # OpenAI-style SSE with choices[0].delta
    BLOCK_DELTA = "block_delta"        # Anthropic typed events
    NATIVE_SESSION = "native_session"  # Gemini SDK chat session


PROVIDER_FAMILIES: dict[str, ProviderFamily] = {
    "Google": ProviderFamily.NATIVE_SESSION,
    "OpenAI": ProviderFamily.DELTA_JSON,
    "DeepSeek": ProviderFamily.DELTA_JSON,
    "Groq": ProviderFamily.DELTA_JSON,
    "Anthropic": ProviderFamily.BLOCK_DELTA,
}


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    provider: str
    capabilities: tuple[str, ...] = ()
    is_paid: bool = False
    thinking_budget: int = 0

    @property
    def family(self) -> ProviderFamily:
        return PROVIDER_FAMILIES[self.provider]

    @property
    def supports_grounding(self) -> bool:
        return "search" in self.capabilities

    @property
    def supports_maps(self) -> bool:
        return "maps" in self.capabilities

    @property
    def reasoning_only(self) -> bool:
        return "reasoning_only" in self.capabilities

    @property
    def is_image_generator(self) -> bool:
        return "image_generation" in self.capabilities

    @property
    def is_video_generator(self) -> bool:
        return "video_generation" in self.capabilities

    @property
    def is_media_generator(self) -> bool:
        return self.is_image_generator or self.is_video_generator


AVAILABLE_MODELS: list[ModelInfo] = [
    # --- Google Gemini ---
    ModelInfo("gemini-2.5-flash", "Gemini 2.5 Flash", "Google", ("text", "image", "code", "maps")),
    ModelInfo("gemini-3-pro-preview", "Gemini 3 Pro", "Google",
              ("text", "image", "code", "reasoning", "thinking"), thinking_budget=32768),
    ModelInfo("gemini-3-flash-preview", "Gemini 3 Flash", "Google", ("text", "search")),
    ModelInfo("gemini-2.5-flash-image", "Gemini 2.5 Flash Image", "Google", ("image_generation",)),
    ModelInfo("gemini-3-pro-image-preview", "Gemini 3 Pro Image", "Google",
              ("image_generation",), is_paid=True),
    ModelInfo("veo-3.1-fast-generate-preview", "Veo 3.1 Fast", "Google",
              ("video_generation",), is_paid=True),
    ModelInfo("veo-3.1-generate-preview", "Veo 3.1 High-Quality", "Google",
              ("video_generation",), is_paid=True),
    # --- OpenAI ---
    ModelInfo("gpt-4o", "GPT-4o", "OpenAI", ("text", "image", "code")),
    ModelInfo("gpt-4o-mini", "GPT-4o Mini", "OpenAI", ("text", "code")),
    ModelInfo("o1-preview", "o1 Preview", "OpenAI", ("text", "reasoning", "reasoning_only")),
    ModelInfo("o1-mini", "o1 Mini", "OpenAI", ("text", "reasoning", "code", "reasoning_only")),
    ModelInfo("dall-e-3", "DALL-E 3", "OpenAI", ("image_generation",)),
    # --- Anthropic ---
    ModelInfo("claude-3-5-sonnet-20240620", "Claude 3.5 Sonnet", "Anthropic", ("text", "image", "code")),
    ModelInfo("claude-3-opus-20240229", "Claude 3 Opus", "Anthropic", ("text", "code")),
    ModelInfo("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", "Anthropic", ("text",)),
    # --- DeepSeek ---
    ModelInfo("deepseek-chat", "DeepSeek V3", "DeepSeek", ("text", "code")),
    ModelInfo("deepseek-reasoner", "DeepSeek R1", "DeepSeek", ("text", "reasoning")),
    ModelInfo("deepseek-coder", "DeepSeek Coder", "DeepSeek", ("text", "code")),
    # --- Groq ---
    ModelInfo("llama-3.3-70b-versatile", "Llama 3.3 70B", "Groq", ("text",)),
    ModelInfo("mixtral-8x7b-32768", "Mixtral 8x7B", "Groq", ("text",)),
    ModelInfo("gemma2-9b-it", "Gemma 2 9B", "Groq", ("text",)),
]


@dataclass
class ModelCatalog:
    """Lookup table from model id to ModelInfo."""
    models: dict[str, ModelInfo] = field(default_factory=dict)

    @classmethod
    def default(cls, extra: list[dict] | None = None) -> ModelCatalog:
        catalog = cls({m.id: m for m in AVAILABLE_MODELS})
        for entry in extra or []:
            catalog.register_from_config(entry)
        return catalog

    def register(self, info: ModelInfo) -> None:
        if info.provider not in PROVIDER_FAMILIES:
            raise ValueError(f"Unknown provider '{info.provider}' for model '{info.id}'")
        self.models[info.id] = info

    def register_from_config(self, entry: dict) -> None:
        """Add a model described in config.yaml; bad entries are logged and skipped."""
        try:
            self.register(ModelInfo(
                id=entry["id"],
                name=entry.get("name", entry["id"]),
                provider=entry["provider"],
                capabilities=tuple(entry.get("capabilities", ("text",))),
                is_paid=bool(entry.get("is_paid", False)),
                thinking_budget=int(entry.get("thinking_budget", 0)),
            ))
        except (KeyError, ValueError) as e:
            logger.warning("Skipping catalog entry %r: %s", entry, e)

    def get(self, model_id: str) -> ModelInfo:
        info = self.models.get(model_id)
        if info is None:
            raise UnknownModelError(model_id)
        return info

    def __contains__(self, model_id: str) -> bool:
        return model_id in self.models

    def by_provider(self, provider: str) -> list[ModelInfo]:
        return [m for m in self.models.values() if m.provider == provider]
