"""
End-to-end tests for a chat turn: enrichment → fan-out → sink.
Backends are scripted fakes; connectors talk to httpx.MockTransport.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from omnichat.backends.base import GenerationConfig
from omnichat.backends.gemini import GeminiAdapter
from omnichat.backends.router import AdapterRouter
from omnichat.catalog import ModelCatalog
from omnichat.chat import ChatSession, build_system_prompt
from omnichat.credentials import CredentialResolver
from omnichat.enrichment.connectors import build_connectors
from omnichat.enrichment.pipeline import EnrichmentPipeline
from omnichat.main import build_runtime
from omnichat.orchestrator import FanOutOrchestrator
from omnichat.sinks import DurableSink, EphemeralSink
from omnichat.storage.models import ConversationMode, Message
from omnichat.storage.sqlite_store import SQLiteStore
from omnichat.transport import ResilientTransport
from tests.fakes import FakeAdapter, RecordingSink, mock_transport, text_chunks


def make_session(adapters, keys=None, pipeline=None, models=("gpt-4o",), **kwargs):
    router = AdapterRouter(ModelCatalog.default(), ResilientTransport(), adapters=adapters)
    credentials = CredentialResolver(admin_keys=keys if keys is not None else {"openai": "sk-o", "google": "g"})
    orchestrator = FanOutOrchestrator(router, credentials)
    return ChatSession(pipeline or EnrichmentPipeline(), orchestrator, models, **kwargs)


def fake_titler(title_text):
    """GeminiAdapter whose genai client is a mock; .generate is the generate_content mock."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(text=title_text))
    titler = GeminiAdapter(client_factory=lambda key: client)
    titler.generate = client.aio.models.generate_content
    return titler


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_image_command_goes_to_image_model_only(image_media):
    """'/image a red bicycle' with text models selected."""
    openai = FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("should not run")})
    google = FakeAdapter("Google", media={"gemini-3-pro-image-preview": image_media})
    session = make_session({"OpenAI": openai, "Google": google}, models=["gpt-4o", "gpt-4o-mini"])
    session.sink = RecordingSink()

    turn = await session.send_message("/image a red bicycle")

    assert turn.enrichment.command == "/image"
    assert [r.model_id for r in turn.results] == ["gemini-3-pro-image-preview"]
    assert openai.requests == []
    assert google.media_requests[0].new_message == "a red bicycle"

    user, reply = session.sink.messages()
    assert user.role == "user"
    assert user.content == "a red bicycle"
    assert reply.model == "gemini-3-pro-image-preview"
    assert reply.content == "Generated Image:"
    assert reply.image_url == "https://img.example/red-bicycle.png"
    assert reply.thinking is False


@pytest.mark.asyncio
async def test_weather_block_reaches_the_model():
    def open_meteo(request):
        if "geocoding" in request.url.host:
            return httpx.Response(200, json={"results": [
                {"name": "Cairo", "country": "Egypt", "latitude": 30.06, "longitude": 31.25},
            ]})
        return httpx.Response(200, json={
            "current": {"temperature_2m": 31.2, "wind_speed_10m": 12.5},
            "daily": {"temperature_2m_max": [34.0], "temperature_2m_min": [22.1]},
        })

    transport, _ = mock_transport(open_meteo)
    openai = FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("Hot.")})
    session = make_session({"OpenAI": openai}, pipeline=EnrichmentPipeline(build_connectors({}, transport)))

    turn = await session.send_message("what's the weather in Cairo")

    prompt = openai.requests[0].new_message
    assert prompt.startswith("what's the weather in Cairo\n\n[System (Weather Connector)]: Weather for Cairo, Egypt:")
    assert "Current: 31.2°C, Wind: 12.5km/h" in prompt
    assert turn.user_message.content == prompt
    assert turn.results[0].content == "Hot."


@pytest.mark.asyncio
async def test_weather_unreachable_sends_plain_prompt():
    def unreachable(request):
        raise httpx.ConnectError("no route to host")

    transport, _ = mock_transport(unreachable)
    openai = FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("No idea.")})
    session = make_session({"OpenAI": openai}, pipeline=EnrichmentPipeline(build_connectors({}, transport)))

    turn = await session.send_message("what's the weather in Cairo")

    assert openai.requests[0].new_message == "what's the weather in Cairo"
    assert turn.results[0].ok


@pytest.mark.asyncio
async def test_two_models_one_missing_key():
    openai = FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("a", "b", "c", "d", "e")})
    deepseek = FakeAdapter("DeepSeek", scripts={"deepseek-chat": text_chunks("never")})
    session = make_session(
        {"OpenAI": openai, "DeepSeek": deepseek},
        keys={"openai": "sk-o"},
        models=["deepseek-chat", "gpt-4o"],
    )
    sink = RecordingSink()
    session.sink = sink

    turn = await session.send_message("hello both")

    failed, ok = turn.results
    assert failed.error == "DeepSeek API key missing. Please check your settings."
    assert ok.content == "abcde"

    gpt = sink.by_model("gpt-4o")
    assert sink.contents_for(gpt.id)[:5] == ["a", "ab", "abc", "abcd", "abcde"]
    assert gpt.thinking is False
    ds = sink.by_model("deepseek-chat")
    assert ds.error is True
    assert ds.content.startswith("Error: DeepSeek API key missing")


# ---------------------------------------------------------------------------
# History, system prompt, modes, titles
# ---------------------------------------------------------------------------

def test_build_system_prompt():
    assert build_system_prompt() is None
    assert build_system_prompt("Be brief", "Pirate", ["likes tea", "lives in Oslo"]) == (
        "[System Instructions]: Be brief\n\n"
        "[Role/Persona]: Pirate\n\n"
        "[User Context/Memories]:\n- likes tea\n- lives in Oslo"
    )
    assert build_system_prompt(persona="Pirate") == "[Role/Persona]: Pirate"


@pytest.mark.asyncio
async def test_turn_carries_system_prompt_and_history():
    openai = FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("reply")})
    session = make_session(
        {"OpenAI": openai},
        generation_config=GenerationConfig(temperature=0.2, system_prompt="Be brief"),
        persona="Pirate",
    )
    await session.sink.create_placeholder(Message(role="user", content="earlier question"))
    await session.sink.create_placeholder(Message(role="model", content="earlier answer"))
    await session.sink.create_placeholder(Message(role="model", content="Error: boom", error=True))
    await session.sink.create_placeholder(Message(role="model", content="", thinking=True))

    await session.send_message("next")

    request = openai.requests[0]
    assert request.history == (("user", "earlier question"), ("model", "earlier answer"))
    assert request.generation_config.temperature == 0.2
    assert request.generation_config.system_prompt == "[System Instructions]: Be brief\n\n[Role/Persona]: Pirate"
    # the session's own config is not mutated
    assert session.generation_config.system_prompt == "Be brief"


@pytest.mark.asyncio
async def test_second_turn_sees_first():
    openai = FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("first reply")})
    session = make_session({"OpenAI": openai})

    await session.send_message("one")
    await session.send_message("two")

    assert openai.requests[1].history == (("user", "one"), ("model", "first reply"))


@pytest.mark.asyncio
async def test_set_mode_switches_sink(tmp_path):
    store = SQLiteStore(str(tmp_path / "chat.db"))
    openai = FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("hi")})
    session = make_session({"OpenAI": openai}, store=store)
    assert isinstance(session.sink, EphemeralSink)

    await session.send_message("temporary")
    ephemeral = session.sink

    durable = session.set_mode(ConversationMode.durable("c1"))
    assert isinstance(durable, DurableSink)
    await session.send_message("kept")

    assert [m.content for m in store.get_conversation("c1")] == ["kept", "hi"]
    assert len(ephemeral.messages()) == 2
    # the durable turn starts without the ephemeral history
    assert openai.requests[1].history == ()


@pytest.mark.asyncio
async def test_first_durable_turn_gets_title(tmp_path):
    store = SQLiteStore(str(tmp_path / "chat.db"))
    titler = fake_titler('"Red Bicycles"')
    session = make_session(
        {"OpenAI": FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("Nice bike")})},
        mode=ConversationMode.durable("c1"),
        store=store,
        titler=titler,
    )

    first = await session.send_message("tell me about red bicycles")
    second = await session.send_message("and blue ones?")

    assert first.title == "Red Bicycles"
    assert second.title is None
    assert store.get_title("c1") == "Red Bicycles"
    titler.generate.assert_awaited_once()
    assert "tell me about red bicycles" in titler.generate.call_args.kwargs["contents"]


@pytest.mark.asyncio
async def test_no_title_for_ephemeral_or_failed_turns(tmp_path):
    titler = fake_titler("Anything")
    ephemeral = make_session(
        {"OpenAI": FakeAdapter("OpenAI", scripts={"gpt-4o": text_chunks("ok")})},
        titler=titler,
    )
    assert (await ephemeral.send_message("hi")).title is None

    store = SQLiteStore(str(tmp_path / "chat.db"))
    failing = make_session(
        {"OpenAI": FakeAdapter("OpenAI", scripts={"gpt-4o": [RuntimeError("down")]})},
        mode=ConversationMode.durable("c2"),
        store=store,
        titler=titler,
    )
    assert (await failing.send_message("hi")).title is None
    titler.generate.assert_not_awaited()
    assert store.get_title("c2") == "New Conversation"


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_build_runtime_from_config(tmp_path):
    cfg = {
        "transport": {"max_retries": 1},
        "api_keys": {"google": "admin-g", "openai": ""},
        "catalog": {"models": [{"id": "gpt-4.1", "provider": "OpenAI"}]},
        "orchestrator": {"max_models": 3, "max_concurrency": 2},
        "connectors": {"weather": {"enabled": False}},
        "storage": {"sqlite_path": str(tmp_path / "rt.db")},
        "defaults": {"models": ["gpt-4o"], "generation": {"temperature": 0.3}},
    }
    runtime = build_runtime(cfg)
    try:
        assert "gpt-4.1" in runtime.catalog
        assert runtime.transport.max_retries == 1
        assert [c.key for c in runtime.pipeline.connectors] == ["hackernews", "wikipedia", "coingecko"]

        session = runtime.create_session(user_keys={"openai": "user-o"}, mode=ConversationMode.durable("c1"))
        assert session.selected_models == ["gpt-4o"]
        assert session.generation_config.temperature == 0.3
        assert session.orchestrator.max_models == 3
        assert session.credentials.resolve("OpenAI") == "user-o"
        assert session.credentials.resolve("Google") == "admin-g"
        assert isinstance(session.titler, GeminiAdapter)
        assert isinstance(session.sink, DurableSink)
    finally:
        await runtime.aclose()
