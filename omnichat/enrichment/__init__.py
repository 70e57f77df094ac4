"""
Prompt enrichment: slash-commands and free-text context connectors.
"""
from omnichat.enrichment.commands import COMMANDS, parse_command
from omnichat.enrichment.connectors import CONNECTORS, Connector, build_connectors
from omnichat.enrichment.pipeline import EnrichmentPipeline, EnrichmentResult

__all__ = [
    "COMMANDS",
    "CONNECTORS",
    "Connector",
    "EnrichmentPipeline",
    "EnrichmentResult",
    "build_connectors",
    "parse_command",
]
