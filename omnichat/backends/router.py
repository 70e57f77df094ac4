"""
Adapter router — the single dispatch point from model id to adapter.

model id → catalog entry → provider → protocol family → adapter class.
One adapter instance per provider, created lazily and shared by every
turn; all of them share one ResilientTransport.
"""

from __future__ import annotations

import logging

from omnichat.backends.anthropic import AnthropicAdapter
from omnichat.backends.base import BaseAdapter
from omnichat.backends.gemini import GeminiAdapter
from omnichat.backends.openai_compat import OpenAICompatibleAdapter
from omnichat.catalog import ModelCatalog, ModelInfo, ProviderFamily
from omnichat.transport import ResilientTransport

logger = logging.getLogger(__name__)

# Protocol family → adapter class
FAMILIES: dict[ProviderFamily, type[BaseAdapter]] = {
    ProviderFamily.DELTA_JSON: OpenAICompatibleAdapter,
    ProviderFamily.BLOCK_DELTA: AnthropicAdapter,
    ProviderFamily.NATIVE_SESSION: GeminiAdapter,
}


class AdapterRouter:
    """Resolves model ids to the adapter that serves them."""

    def __init__(
        self,
        catalog: ModelCatalog,
        transport: ResilientTransport,
        providers_config: dict | None = None,
        adapters: dict[str, BaseAdapter] | None = None,
    ):
        self.catalog = catalog
        self.transport = transport
        self.providers_config = {
            str(name).lower(): cfg or {} for name, cfg in (providers_config or {}).items()
        }
        self._adapters: dict[str, BaseAdapter] = dict(adapters or {})

    def _create_adapter(self, info: ModelInfo) -> BaseAdapter:
        """Instantiate the adapter for a provider from its config section."""
        cls = FAMILIES[info.family]
        cfg = self.providers_config.get(info.provider.lower(), {})
        adapter = cls.from_config(info.provider, self.transport, cfg)
        logger.info("Created %s for provider '%s'", cls.__name__, info.provider)
        return adapter

    def resolve(self, model_id: str) -> tuple[ModelInfo, BaseAdapter]:
        """
        Look up a model and its adapter.
        Raises UnknownModelError for ids outside the catalog.
        """
        info = self.catalog.get(model_id)
        adapter = self._adapters.get(info.provider)
        if adapter is None:
            adapter = self._create_adapter(info)
            self._adapters[info.provider] = adapter
        return info, adapter

    def get_adapter(self, provider: str) -> BaseAdapter | None:
        return self._adapters.get(provider)

    async def aclose(self):
        for adapter in self._adapters.values():
            try:
                await adapter.aclose()
            except Exception as e:
                logger.warning("Failed to close %r: %s", adapter, e)
        await self.transport.aclose()
