"""
Chat session — the entry point for one user turn.

send_message():
  1. enrich the raw text (slash-command or connectors)
  2. write the user message (enriched prompt) to the current sink
  3. build history from earlier finished, non-error messages
  4. assemble the system prompt (instructions, persona, memories)
  5. fan out to the override models or the selected models
  6. on the first durable turn, name the conversation

A session writes to exactly one sink at a time. set_mode() swaps it;
messages already written stay where they are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Sequence

from omnichat.backends.base import GenerationConfig
from omnichat.backends.gemini import DEFAULT_TITLE, GeminiAdapter
from omnichat.cancellation import CancellationToken
from omnichat.credentials import CredentialResolver
from omnichat.enrichment.pipeline import EnrichmentPipeline, EnrichmentResult
from omnichat.orchestrator import DispatchResult, FanOutOrchestrator
from omnichat.sinks import MessageSink, make_sink
from omnichat.storage.models import Attachment, ConversationMode, Message
from omnichat.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    user_message: Message
    enrichment: EnrichmentResult
    results: list[DispatchResult] = field(default_factory=list)
    title: str | None = None


def build_system_prompt(
    instructions: str = "",
    persona: str = "",
    memories: Sequence[str] = (),
) -> str | None:
    sections = []
    if instructions:
        sections.append(f"[System Instructions]: {instructions}")
    if persona:
        sections.append(f"[Role/Persona]: {persona}")
    if memories:
        sections.append("[User Context/Memories]:\n" + "\n".join(f"- {m}" for m in memories))
    return "\n\n".join(sections) or None


class ChatSession:
    """One user's conversation, in durable or ephemeral mode."""

    def __init__(
        self,
        pipeline: EnrichmentPipeline,
        orchestrator: FanOutOrchestrator,
        selected_models: Sequence[str],
        *,
        mode: ConversationMode | None = None,
        store: SQLiteStore | None = None,
        generation_config: GenerationConfig | None = None,
        persona: str = "",
        memories: Sequence[str] = (),
        titler: GeminiAdapter | None = None,
        credentials: CredentialResolver | None = None,
    ):
        self.pipeline = pipeline
        self.orchestrator = orchestrator
        self.selected_models = list(selected_models)
        self.store = store
        self.generation_config = generation_config or GenerationConfig()
        self.persona = persona
        self.memories = list(memories)
        self.titler = titler
        self.credentials = credentials or orchestrator.credentials
        self.mode = mode or ConversationMode.ephemeral()
        self.sink: MessageSink = make_sink(self.mode, store)

    def set_mode(self, mode: ConversationMode) -> MessageSink:
        """Switch where new messages go. Prior messages are not migrated."""
        self.mode = mode
        self.sink = make_sink(mode, self.store)
        logger.info(
            "Session mode: %s",
            "ephemeral" if mode.is_ephemeral else f"durable ({mode.conversation_id})",
        )
        return self.sink

    def history(self) -> list[tuple[str, str]]:
        """Earlier turns usable as model context."""
        return [
            (m.role, m.content)
            for m in self.sink.messages()
            if not m.error and not m.thinking and m.content
        ]

    def _turn_config(self) -> GenerationConfig:
        system_prompt = build_system_prompt(
            self.generation_config.system_prompt or "", self.persona, self.memories,
        )
        return replace(self.generation_config, system_prompt=system_prompt)

    async def send_message(
        self,
        text: str,
        attachments: Sequence[Attachment] = (),
        cancel: CancellationToken | None = None,
    ) -> TurnResult:
        enrichment = await self.pipeline.enrich(text)
        history = self.history()
        first_turn = not history

        user_message = Message(role="user", content=enrichment.prompt, attachments=list(attachments))
        await self.sink.create_placeholder(user_message)

        models = enrichment.model_override or self.selected_models
        results = await self.orchestrator.dispatch(
            enrichment.prompt,
            models,
            self.sink,
            history=history,
            attachments=attachments,
            generation_config=self._turn_config(),
            force_grounding=enrichment.force_grounding,
            cancel=cancel,
        )

        turn = TurnResult(user_message=user_message, enrichment=enrichment, results=results)
        if first_turn and not self.mode.is_ephemeral:
            turn.title = await self._name_conversation(text, results)
        return turn

    async def _name_conversation(self, text: str, results: list[DispatchResult]) -> str | None:
        if self.titler is None or not results or not results[0].ok:
            return None
        api_key = self.credentials.resolve(self.titler.provider)
        if not api_key:
            logger.debug("No %s key for title generation", self.titler.provider)
            return None
        title = await self.titler.generate_title(api_key, text, results[0].content)
        if title == DEFAULT_TITLE:
            return None
        try:
            await self.sink.set_title(title)
        except Exception as e:
            logger.warning("Failed to store title for %s: %s", self.sink.conversation_id, e)
            return None
        return title
