"""
Enrichment pipeline — raw user text in, (prompt, model override) out.

Command path first: a leading slash-command rewrites the prompt and may
replace the model set. It never touches the network.

Otherwise the connector path: every ready connector whose trigger matches
runs in table order and appends its labelled block to the prompt. A
failing connector contributes nothing; the turn always proceeds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from omnichat.enrichment.commands import parse_command
from omnichat.enrichment.connectors import Connector, build_connectors
from omnichat.transport import ResilientTransport

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentResult:
    prompt: str
    model_override: list[str] | None = None
    force_grounding: bool = False
    command: str = ""
    connectors_used: list[str] = field(default_factory=list)


class EnrichmentPipeline:
    """Evaluates slash-commands and connector triggers for one user turn."""

    def __init__(
        self,
        connectors: list[Connector] | None = None,
        command_models: dict[str, str] | None = None,
    ):
        self.connectors = list(connectors or [])
        self.command_models = dict(command_models or {})

    @classmethod
    def from_config(cls, cfg: dict, transport: ResilientTransport) -> EnrichmentPipeline:
        return cls(
            connectors=build_connectors(cfg.get("connectors"), transport),
            command_models=(cfg.get("commands") or {}).get("models"),
        )

    async def enrich(self, raw_text: str) -> EnrichmentResult:
        cmd = parse_command(raw_text, self.command_models)
        if cmd.active:
            return EnrichmentResult(
                prompt=cmd.prompt,
                model_override=cmd.models,
                force_grounding=cmd.force_grounding,
                command=cmd.name,
            )

        prompt = raw_text
        used: list[str] = []
        lowered = raw_text.lower()
        for connector in self.connectors:
            if not connector.is_ready() or not connector.matches(lowered):
                continue
            query = connector.extract_query(raw_text)
            if not query:
                logger.debug("%s triggered but no usable query", connector.name)
                continue
            snippets = await connector.search(query)
            if not snippets:
                continue
            prompt += connector.render(snippets)
            used.append(connector.key)
            logger.info("Enriched prompt with %s (%d snippets)", connector.name, len(snippets))

        return EnrichmentResult(prompt=prompt, connectors_used=used)
