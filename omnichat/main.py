"""
Wiring — build the dispatch core from config.yaml.

    cfg = get_config()
    setup_logging(cfg)
    runtime = build_runtime(cfg)
    session = runtime.create_session(user_keys={"openai": "..."})
    await session.send_message("compare these two approaches ...")
    await runtime.aclose()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from omnichat.backends.base import GenerationConfig
from omnichat.backends.gemini import GeminiAdapter
from omnichat.backends.router import AdapterRouter
from omnichat.catalog import ModelCatalog
from omnichat.chat import ChatSession
from omnichat.config import get_config
from omnichat.credentials import CredentialResolver
from omnichat.enrichment.pipeline import EnrichmentPipeline
from omnichat.orchestrator import FanOutOrchestrator
from omnichat.storage.models import ConversationMode
from omnichat.storage.sqlite_store import SQLiteStore
from omnichat.transport import ResilientTransport

logger = logging.getLogger(__name__)


def setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


@dataclass
class Runtime:
    """Long-lived collaborators shared by every session."""
    cfg: dict
    transport: ResilientTransport
    catalog: ModelCatalog
    router: AdapterRouter
    credentials: CredentialResolver
    pipeline: EnrichmentPipeline
    store: SQLiteStore | None

    def create_session(
        self,
        user_keys: dict | None = None,
        mode: ConversationMode | None = None,
        models: Sequence[str] | None = None,
        persona: str = "",
        memories: Sequence[str] = (),
        generation_config: GenerationConfig | None = None,
    ) -> ChatSession:
        """A chat session for one user, using their own keys where they have them."""
        defaults = self.cfg.get("defaults", {})
        orch_cfg = self.cfg.get("orchestrator", {})
        credentials = self.credentials.with_user_keys(user_keys)
        orchestrator = FanOutOrchestrator(
            self.router,
            credentials,
            max_models=orch_cfg.get("max_models", 6),
            max_concurrency=orch_cfg.get("max_concurrency", 4),
        )

        titler = None
        if defaults.get("auto_title", True):
            _, titler = self.router.resolve(defaults.get("title_model", "gemini-3-flash-preview"))
            if not isinstance(titler, GeminiAdapter):
                titler = None

        return ChatSession(
            self.pipeline,
            orchestrator,
            models or defaults.get("models", ["gemini-2.5-flash"]),
            mode=mode,
            store=self.store,
            generation_config=generation_config or GenerationConfig.from_dict(defaults.get("generation")),
            persona=persona,
            memories=memories,
            titler=titler,
            credentials=credentials,
        )

    async def aclose(self):
        await self.router.aclose()


def build_runtime(cfg: dict | None = None) -> Runtime:
    cfg = cfg if cfg is not None else get_config()

    t_cfg = cfg.get("transport", {})
    transport = ResilientTransport(
        timeout=t_cfg.get("timeout", 120),
        max_retries=t_cfg.get("max_retries", 2),
        initial_backoff_ms=t_cfg.get("initial_backoff_ms", 500),
    )
    catalog = ModelCatalog.default((cfg.get("catalog") or {}).get("models"))
    router = AdapterRouter(catalog, transport, cfg.get("providers"))
    credentials = CredentialResolver(admin_keys=cfg.get("api_keys"))
    pipeline = EnrichmentPipeline.from_config(cfg, transport)

    store = None
    sqlite_path = (cfg.get("storage") or {}).get("sqlite_path")
    if sqlite_path:
        store = SQLiteStore(sqlite_path)

    logger.info(
        "omnichat ready: %d models, %d connectors, storage=%s",
        len(catalog.models), len(pipeline.connectors), sqlite_path or "(ephemeral only)",
    )
    return Runtime(cfg, transport, catalog, router, credentials, pipeline, store)
