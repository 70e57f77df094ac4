"""Tests for ephemeral and durable message sinks."""

import pytest

from omnichat.sinks import DurableSink, EphemeralSink, make_sink
from omnichat.storage.models import ConversationMode, Message
from omnichat.storage.sqlite_store import SQLiteStore


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "sinks.db"))


def test_make_sink_picks_by_mode(store):
    assert isinstance(make_sink(ConversationMode.ephemeral()), EphemeralSink)
    durable = make_sink(ConversationMode.durable("c1"), store)
    assert isinstance(durable, DurableSink)
    assert durable.conversation_id == "c1"


def test_durable_mode_needs_store_and_id():
    with pytest.raises(ValueError):
        make_sink(ConversationMode.durable("c1"))
    with pytest.raises(ValueError):
        ConversationMode.durable("")


@pytest.mark.asyncio
async def test_ephemeral_placeholder_then_updates():
    sink = EphemeralSink()
    msg = Message(role="model", model="gpt-4o", thinking=True)
    await sink.create_placeholder(msg)
    await sink.update(msg.id, content="Hel")
    await sink.update(msg.id, content="Hello", thinking=False)

    [stored] = sink.messages()
    assert stored.id == msg.id
    assert stored.conversation_id == "temp"
    assert stored.content == "Hello"
    assert stored.thinking is False


@pytest.mark.asyncio
async def test_ephemeral_unknown_id_is_ignored():
    sink = EphemeralSink()
    await sink.update("missing", content="x")
    assert sink.messages() == []


@pytest.mark.asyncio
async def test_ephemeral_subscribe_and_clear():
    sink = EphemeralSink()
    seen = []
    unsubscribe = sink.subscribe(lambda msgs: seen.append(len(msgs)))
    await sink.create_placeholder(Message(role="user", content="a"))
    sink.clear()
    unsubscribe()
    await sink.create_placeholder(Message(role="user", content="b"))
    assert seen == [0, 1, 0]


@pytest.mark.asyncio
async def test_ephemeral_title_is_ignored():
    sink = EphemeralSink()
    await sink.set_title("anything")
    assert sink.messages() == []


@pytest.mark.asyncio
async def test_durable_writes_through(store):
    sink = DurableSink(store, "c1")
    seen = []
    sink.subscribe(lambda msgs: seen.append([m.content for m in msgs]))

    msg = Message(role="model", model="gpt-4o", thinking=True)
    await sink.create_placeholder(msg)
    await sink.update(msg.id, content="Hi", thinking=False)
    await sink.set_title("Greetings")

    [stored] = sink.messages()
    assert stored.content == "Hi"
    assert stored.thinking is False
    assert store.get_title("c1") == "Greetings"
    assert seen == [[], [""], ["Hi"]]


@pytest.mark.asyncio
async def test_durable_unknown_id_is_ignored(store):
    sink = DurableSink(store, "c1")
    await sink.update("missing", content="x")
    assert sink.messages() == []
