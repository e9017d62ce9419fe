# tests/test_engine.py
"""
Tests for RecallEngine and GenerationStream.

The engine runs against the fake provider and embedder from conftest, so
every reply is "Hello there friend" unless a test scripts another one.
"""

import asyncio
from typing import Optional

import pytest

from llmrecall.engine import EngineStatus, RecallEngine
from llmrecall.exceptions import ConfigError, GenerationBusyError, ProviderError
from llmrecall.memory.world_info import WorldInfo
from llmrecall.models import InsertionMode, MemoryUnit, PromptInsert, Role
from llmrecall.persona import Persona
from llmrecall.plugins import ContextPlugin, PluginResponse
from llmrecall.storage.json_store import JsonMemoryStore

REPLY = "Hello there friend"


@pytest.fixture
def make_engine(persona, settings, tokenizer, clock, make_embedder):
    def _make(provider, plugins=(), engine_persona: Optional[Persona] = None):
        return RecallEngine(provider, engine_persona or persona, user_name="Sam", settings=settings,
                            embedder=make_embedder(), tokenizer=tokenizer, plugins=plugins, clock=clock)
    return _make


@pytest.fixture
def engine(make_engine, provider):
    return make_engine(provider)


class ReplaceInputPlugin(ContextPlugin):
    plugin_id = "replace"

    async def replace_user_input(self, user_input: str) -> PluginResponse:
        return PluginResponse(handled=True, response=f"[{user_input}]")


class WeatherPlugin(ContextPlugin):
    plugin_id = "weather"

    async def replace_user_input(self, user_input: str) -> PluginResponse:
        return PluginResponse(handled=True, response="Weather: rain", replace=False)


class ShoutPlugin(ContextPlugin):
    plugin_id = "shout"

    def replace_output(self, output: str, history) -> Optional[str]:
        return output.upper()


class TestLifecycle:
    """Initialization, status and shutdown."""

    @pytest.mark.asyncio
    async def test_status(self, engine):
        assert engine.status == EngineStatus.NOT_INIT
        await engine.initialize()
        assert engine.status == EngineStatus.READY

    @pytest.mark.asyncio
    async def test_initialize_builds_index(self, engine, vector_for):
        engine.brain.add_memory(MemoryUnit(content="cats", embedding=vector_for("cats")))
        await engine.initialize()
        assert len(engine.retrieval.vault) == 1

    @pytest.mark.asyncio
    async def test_user_name(self, engine, persona):
        assert engine.user_name == "Sam"
        assert persona.brain is engine.brain

    @pytest.mark.asyncio
    async def test_close(self, make_engine, make_provider):
        provider = make_provider()
        async with make_engine(provider):
            pass
        assert provider.closed is True


class TestSendMessage:
    """Streaming replies to user messages."""

    @pytest.mark.asyncio
    async def test_reply_and_logging(self, engine, persona, provider):
        stream = await engine.send_message("hello", log_reply=True)
        assert await stream.result() == REPLY
        assert stream.finish_reason == "stop"
        messages = persona.history.current_messages()
        assert [(m.role, m.content) for m in messages] == [("user", "hello"), ("assistant", REPLY)]
        assert messages[0].author == "Sam"
        assert messages[1].author == "Ada"
        assert provider.calls[-1][-1] == {"role": "user", "content": "hello"}
        assert engine.last_prompt.messages == provider.calls[-1]

    @pytest.mark.asyncio
    async def test_reply_not_logged_by_default(self, engine, persona):
        stream = await engine.send_message("hello")
        await stream.result()
        assert [m.content for m in persona.history.current_messages()] == ["hello"]

    @pytest.mark.asyncio
    async def test_iterate_chunks(self, engine):
        stream = await engine.send_message("hello")
        tokens = [chunk.token async for chunk in stream]
        assert "".join(tokens) == REPLY
        assert stream.done
        with pytest.raises(RuntimeError):
            stream.__aiter__()

    @pytest.mark.asyncio
    async def test_busy_slot(self, make_engine, make_provider, persona, clock, vector_for):
        gate = asyncio.Event()
        engine = make_engine(make_provider(gate=gate))
        first = await engine.send_message("hello")
        assert engine.status == EngineStatus.BUSY
        engine.brain.add_memory(MemoryUnit(content="Sam adopted cats", embedding=vector_for("cats"),
                                           insertion_mode=InsertionMode.NATURAL, added_at=clock.now))
        engine.ledger.add_insert(PromptInsert(id="pinned", content="x", remaining_turns=3))

        with pytest.raises(GenerationBusyError):
            await engine.send_message("my cats", timeout=0.05)
        assert [m.content for m in persona.history.current_messages()] == ["hello"]
        assert [m.content for m in engine.brain.memories] == ["Sam adopted cats"]
        assert engine.brain.memories[0].insertion_mode == InsertionMode.NATURAL
        assert engine.ledger.get("pinned").remaining_turns == 3

        gate.set()
        assert await first.result() == REPLY
        assert engine.status == EngineStatus.READY

    @pytest.mark.asyncio
    async def test_busy_reroll_keeps_reply(self, make_engine, make_provider, persona):
        persona.history.log_message(Role.USER, "hi")
        persona.history.log_message(Role.ASSISTANT, "old reply")
        engine = make_engine(make_provider(gate=asyncio.Event()))
        stream = await engine.continue_reply()
        with pytest.raises(GenerationBusyError):
            await engine.reroll(timeout=0.05)
        assert [m.content for m in persona.history.current_messages()] == ["hi", "old reply"]
        engine.cancel()
        await stream.result()
        assert engine.status == EngineStatus.READY

    @pytest.mark.asyncio
    async def test_cancel(self, make_engine, make_provider, persona):
        engine = make_engine(make_provider(gate=asyncio.Event()))
        assert engine.cancel() is False
        stream = await engine.send_message("hello", log_reply=True)
        await asyncio.sleep(0)
        assert engine.cancel() is True
        assert await stream.result() == ""
        assert stream.cancelled is True
        assert engine.status == EngineStatus.READY
        assert [m.content for m in persona.history.current_messages()] == ["hello"]

    @pytest.mark.asyncio
    async def test_backend_error(self, make_engine, make_provider, persona):
        engine = make_engine(make_provider(error=RuntimeError("boom")))
        stream = await engine.send_message("hello", log_reply=True)
        with pytest.raises(ProviderError, match="boom"):
            await stream.result()
        assert isinstance(stream.error, ProviderError)
        assert engine.status == EngineStatus.READY
        assert [m.content for m in persona.history.current_messages()] == ["hello"]

    @pytest.mark.asyncio
    async def test_backend_error_while_iterating(self, make_engine, make_provider):
        engine = make_engine(make_provider(error=ProviderError("fake", "down")))
        stream = await engine.send_message("hello")
        with pytest.raises(ProviderError, match="down"):
            async for _ in stream:
                pass

    @pytest.mark.asyncio
    async def test_eureka_note_precedes_message(self, engine, persona, clock, vector_for):
        engine.brain.add_memory(MemoryUnit(name="Pets", content="Sam adopted cats", embedding=vector_for("cats"),
                                           insertion_mode=InsertionMode.NATURAL, added_at=clock.now))
        stream = await engine.send_message("my cats are sleeping")
        await stream.result()
        messages = persona.history.current_messages()
        assert messages[0].role == Role.SYSTEM
        assert "Sam adopted cats" in messages[0].content
        assert messages[1].content == "my cats are sleeping"

    @pytest.mark.asyncio
    async def test_retrieved_memory_reaches_prompt(self, engine, persona, provider, vector_for):
        engine.brain.add_memory(MemoryUnit(content="Sam's cats are named Tom and Kit.",
                                           embedding=vector_for("cats")))
        for i, text in enumerate(["hi", "hello", "how are you", "fine"]):
            persona.history.log_message(Role.USER if i % 2 == 0 else Role.ASSISTANT, text)
        stream = await engine.send_message("how are the cats?")
        await stream.result()
        contents = [m["content"] for m in provider.calls[-1]]
        # The default insert index puts retrieved memories three messages deep.
        assert contents[1:3] == ["Sam's cats are named Tom and Kit.", "hi"]


class TestPlugins:
    """Input and output plugins."""

    @pytest.mark.asyncio
    async def test_replace_input(self, make_engine, provider, persona):
        engine = make_engine(provider, plugins=[ReplaceInputPlugin()])
        await (await engine.send_message("hello")).result()
        assert provider.calls[-1][-1] == {"role": "user", "content": "[hello]"}
        assert persona.history.current_messages()[-1].content == "hello"

    @pytest.mark.asyncio
    async def test_append_system_message(self, make_engine, provider):
        engine = make_engine(provider, plugins=[WeatherPlugin()])
        await (await engine.send_message("hello")).result()
        assert provider.calls[-1][-2:] == [
            {"role": "system", "content": "Weather: rain"},
            {"role": "user", "content": "hello"},
        ]

    @pytest.mark.asyncio
    async def test_disabled_plugin(self, make_engine, provider):
        engine = make_engine(provider, plugins=[ReplaceInputPlugin(enabled=False)])
        await (await engine.send_message("hello")).result()
        assert provider.calls[-1][-1]["content"] == "hello"

    @pytest.mark.asyncio
    async def test_replace_output(self, make_engine, provider, persona):
        engine = make_engine(provider, plugins=[ShoutPlugin()])
        stream = await engine.send_message("hello", log_reply=True)
        assert await stream.result() == REPLY.upper()
        assert stream.raw_text == REPLY
        assert persona.history.current_messages()[-1].content == REPLY.upper()


class TestOtherGenerations:
    """continue_reply, reroll and the one-shot queries."""

    @pytest.mark.asyncio
    async def test_continue_reply(self, engine, persona, provider):
        persona.history.log_message(Role.USER, "hi")
        persona.history.log_message(Role.ASSISTANT, "hey")
        stream = await engine.continue_reply(log_reply=True)
        await stream.result()
        assert provider.calls[-1][-1] == {"role": "assistant", "content": "hey"}
        assert [m.content for m in persona.history.current_messages()] == ["hi", "hey", REPLY]

    @pytest.mark.asyncio
    async def test_reroll(self, engine, persona, provider):
        persona.history.log_message(Role.USER, "hi")
        persona.history.log_message(Role.ASSISTANT, "old reply")
        stream = await engine.reroll(log_reply=True)
        await stream.result()
        assert provider.calls[-1][-1] == {"role": "user", "content": "hi"}
        assert [m.content for m in persona.history.current_messages()] == ["hi", REPLY]

    @pytest.mark.asyncio
    async def test_reroll_keeps_user_message(self, engine, persona):
        persona.history.log_message(Role.USER, "hi")
        await (await engine.reroll()).result()
        assert [m.content for m in persona.history.current_messages()] == ["hi"]

    @pytest.mark.asyncio
    async def test_quick_system_query(self, engine, persona, provider):
        persona.history.log_message(Role.USER, "hi")
        assert await engine.quick_system_query("Summarize the chat.") == REPLY
        assert provider.calls[-1][-1] == {"role": "system", "content": "Summarize the chat."}
        assert [m.content for m in persona.history.current_messages()] == ["hi"]
        assert engine.status == EngineStatus.READY

    @pytest.mark.asyncio
    async def test_simple_query(self, engine, provider):
        assert await engine.simple_query("Hi", system="Be brief.") == REPLY
        assert provider.calls[-1] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
        ]

    @pytest.mark.asyncio
    async def test_simple_query_busy(self, make_engine, make_provider):
        engine = make_engine(make_provider(gate=asyncio.Event()))
        stream = await engine.send_message("hello")
        with pytest.raises(GenerationBusyError):
            await engine.simple_query("Hi", timeout=0.05)
        engine.cancel()
        await stream.result()


class TestSessionsAndSettings:
    """Session switching, persona switching and settings updates."""

    @pytest.mark.asyncio
    async def test_start_new_session(self, engine, persona):
        world = WorldInfo()
        world.add_entry(MemoryUnit(content="lore", keywords=["dragon"], ttl_turns=5))
        persona.worlds.append(world)
        world.find_entries("a dragon")
        persona.history.log_message(Role.USER, "hi")
        engine.ledger.add_insert(PromptInsert(id="x", content="y", remaining_turns=5))

        await engine.start_new_session("Next")
        assert persona.history.current_session.name == "Next"
        assert len(persona.history.archived_sessions()) == 1
        assert len(engine.ledger) == 0
        assert world.find_entries("nothing") == []

    @pytest.mark.asyncio
    async def test_change_persona(self, engine):
        other = Persona(name="Bob", instructions="You are {{char}}, friend of {{user}}.")
        await engine.change_persona(other)
        assert engine.persona is other
        assert other.user_name == "Sam"
        assert other.brain is engine.brain
        assert engine.retrieval.persona is other
        assert engine.assembler.system_prompt == "You are Bob, friend of Sam."
        assert engine.status == EngineStatus.READY

    def test_update_settings(self, engine):
        settings = engine.update_settings(context={"max_reply_length": 50}, brain={"min_message_delay": 2})
        assert settings.context.max_reply_length == 50
        assert engine.assembler.settings.max_reply_length == 50
        assert engine.brain.settings.min_message_delay == 2
        assert settings.context.max_context_length == 1000

    def test_update_settings_invalid(self, engine):
        with pytest.raises(ConfigError):
            engine.update_settings(context={"max_reply_length": 5000})
        assert engine.settings.context.max_reply_length == 100

    def test_toggle_retrieval(self, engine):
        engine.update_settings(retrieval={"enabled": False})
        assert engine.retrieval.enabled is False
        engine.update_settings(retrieval={"enabled": True})
        assert engine.retrieval.enabled is True

    @pytest.mark.asyncio
    async def test_regen_embeddings(self, engine):
        engine.brain.add_memory(MemoryUnit(content="rain"))
        assert await engine.regen_embeddings() == 1
        assert len(engine.retrieval.vault) == 1


class TestPersistence:
    """save() and load() through the JSON store."""

    @pytest.mark.asyncio
    async def test_round_trip(self, engine, make_engine, make_provider, persona, tmp_path, vector_for):
        engine.brain.add_memory(MemoryUnit(content="cats fact", embedding=vector_for("cats")))
        await engine.initialize()
        await (await engine.send_message("hello", log_reply=True)).result()
        engine.update_settings(context={"max_reply_length": 64})
        engine.ledger.add_insert(PromptInsert(id="pinned", content="x", remaining_turns=3))
        store = JsonMemoryStore(str(tmp_path))
        await engine.save(store)

        restored_persona = Persona(name="Ada", instructions=persona.instructions)
        restored = make_engine(make_provider(), engine_persona=restored_persona)
        await restored.load(store)
        assert [m.content for m in restored_persona.history.current_messages()] == ["hello", REPLY]
        assert [m.content for m in restored.brain.memories] == ["cats fact"]
        assert restored.ledger.get("pinned").remaining_turns == 3
        assert restored.settings.context.max_reply_length == 64
        assert restored.assembler.settings.max_reply_length == 64
        assert len(restored.retrieval.vault) == 1
        assert restored.retrieval.rebuild_count == 0
        assert restored.status == EngineStatus.READY

    @pytest.mark.asyncio
    async def test_unknown_vector_ids_force_rebuild(self, make_engine, make_provider, tmp_path, vector_for):
        store = JsonMemoryStore(str(tmp_path))
        await store.save_vectors(["ghost"], [vector_for("cats")])
        engine = make_engine(make_provider(), engine_persona=Persona(name="Ada"))
        await engine.load(store)
        assert len(engine.retrieval.vault) == 0

    @pytest.mark.asyncio
    async def test_load_empty_store(self, engine, tmp_path):
        await engine.load(JsonMemoryStore(str(tmp_path / "missing")))
        assert engine.brain.memories == []
        assert engine.settings.context.max_reply_length == 100
        assert len(engine.ledger) == 0
        assert engine.status == EngineStatus.READY
