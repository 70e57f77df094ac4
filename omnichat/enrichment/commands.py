"""
Slash-commands — user-level overrides typed at the start of a message.

Two kinds, both pure (no network, no side effects):

  Model-selecting — replace the turn's model set
    /image <prompt>      → image model, prompt passed through literally
    /video <prompt>      → video model
    /web, /search <q>    → search-grounded model, grounding forced on
    /deep <q>            → long-thinking reasoning model

  Rewriting — keep the selected models, reshape the prompt
    /page, /quiz, /visualize <text>  → "[Task: <name>] <text>"
    /summarize                       → fixed summary request
    /rewrite, /eli5, /fix, /review, /short <text> → instruction prefix

The token is case-sensitive and must be the first word. Unknown tokens
are not commands; the text goes on to the connector path untouched.

Examples:
    "/image a red fox in snow"
    "/web latest python release"
    "/eli5 quantum entanglement"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandRule:
    """One row of the command table."""
    template: str = "{content}"          # {content} is the text after the token
    model_key: str = ""                  # key into the command model map
    force_grounding: bool = False


# Default model per model-selecting command; overridable from config.yaml
DEFAULT_COMMAND_MODELS = {
    "image": "gemini-3-pro-image-preview",
    "video": "veo-3.1-fast-generate-preview",
    "web": "gemini-3-flash-preview",
    "deep": "gemini-3-pro-preview",
}

COMMANDS: dict[str, CommandRule] = {
    "/image": CommandRule(model_key="image"),
    "/video": CommandRule(model_key="video"),
    "/web": CommandRule(model_key="web", force_grounding=True),
    "/search": CommandRule(model_key="web", force_grounding=True),
    "/deep": CommandRule(model_key="deep"),
    "/page": CommandRule(template="[Task: page] {content}"),
    "/quiz": CommandRule(template="[Task: quiz] {content}"),
    "/visualize": CommandRule(template="[Task: visualize] {content}"),
    "/summarize": CommandRule(template="Please summarize the conversation so far."),
    "/rewrite": CommandRule(template="Rewrite the following text professionally: {content}"),
    "/eli5": CommandRule(template="Explain the following topic like I'm 5 years old: {content}"),
    "/fix": CommandRule(
        template="Please fix grammar and spelling in the following text, "
                 "and briefly list the changes: {content}"
    ),
    "/review": CommandRule(
        template="Please review this code for bugs, performance issues, "
                 "and best practices: {content}"
    ),
    "/short": CommandRule(template="TL;DR. Please provide a very concise summary of: {content}"),
}


@dataclass
class ParsedCommand:
    """Result of matching a message against the command table."""
    active: bool = False                 # True if a known token was found
    name: str = ""                       # the token, e.g. "/image"
    prompt: str = ""                     # rewritten prompt (original text if inactive)
    models: list[str] | None = None      # model override, None = keep selection
    force_grounding: bool = False
    content: str = field(default="", repr=False)


def parse_command(
    text: str,
    command_models: dict[str, str] | None = None,
    commands: dict[str, CommandRule] | None = None,
) -> ParsedCommand:
    """
    Match a leading slash-command.

    Returns ParsedCommand(active=False, prompt=text) when the text does not
    start with a known command token.
    """
    if not text.startswith("/"):
        return ParsedCommand(prompt=text)

    table = COMMANDS if commands is None else commands
    token = text.split(maxsplit=1)[0]
    rule = table.get(token)
    if rule is None:
        logger.debug("Unknown command token %r, treating as plain text", token)
        return ParsedCommand(prompt=text)

    content = text[len(token):].strip()
    models = None
    if rule.model_key:
        model_map = {**DEFAULT_COMMAND_MODELS, **(command_models or {})}
        models = [model_map[rule.model_key]]

    cmd = ParsedCommand(
        active=True,
        name=token,
        prompt=rule.template.format(content=content),
        models=models,
        force_grounding=rule.force_grounding,
        content=content,
    )
    logger.info(
        "command: %s models=%s grounding=%s",
        token, models or "(unchanged)", rule.force_grounding,
    )
    return cmd
