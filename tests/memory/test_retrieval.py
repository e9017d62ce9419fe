# tests/memory/test_retrieval.py
"""
Tests for the RetrievalEngine: embedding outcomes, auto-disable, index
rebuilds and the reranked search.
"""

import pytest

from llmrecall.config.models import RetrievalSettings
from llmrecall.memory.retrieval import (OutcomeStatus, RetrievalEngine,
                                        merge_embeddings, normalize)
from llmrecall.memory.vault import cosine_distance
from llmrecall.memory.world_info import WorldInfo
from llmrecall.models import ChatSession, InsertionMode, MemoryUnit


def _archive(persona, *sessions):
    """Install ``sessions`` as archived sessions followed by an empty current one."""
    persona.history.sessions = list(sessions) + [ChatSession(name="Current session")]


class TestHelpers:
    """Tests for normalize and merge_embeddings."""

    def test_normalize(self):
        assert normalize([3.0, 4.0]) == pytest.approx([0.6, 0.8])

    @pytest.mark.parametrize("vector", [[], [0.0, 0.0], [float("nan"), 1.0]])
    def test_normalize_degenerate(self, vector):
        assert normalize(vector) is None

    def test_merge_weights_and_normalizes(self):
        merged = merge_embeddings([1.0, 0.0], [0.0, 1.0], 0.2, 0.8)
        assert merged == pytest.approx(normalize([0.2, 0.8]))

    def test_merge_with_empty_side(self):
        assert merge_embeddings([], [0.0, 1.0]) == [0.0, 1.0]
        assert merge_embeddings([1.0, 0.0], []) == [1.0, 0.0]

    def test_merge_size_mismatch(self):
        assert merge_embeddings([1.0], [0.0, 1.0]) == []


class TestEmbed:
    """Tests for RetrievalEngine.embed."""

    @pytest.mark.asyncio
    async def test_ok_outcome_is_normalized(self, retrieval, vector_for):
        outcome = await retrieval.embed("I love cats")
        assert outcome.ok
        assert outcome.status == OutcomeStatus.OK
        assert outcome.vector == pytest.approx(vector_for("cats"))

    @pytest.mark.asyncio
    async def test_input_is_truncated(self, make_embedder):
        embedder = make_embedder()
        engine = RetrievalEngine(embedder, RetrievalSettings(max_embedding_chars=10))
        await engine.embed("x" * 50)
        assert embedder.calls == ["x" * 10]

    @pytest.mark.asyncio
    async def test_disabled_by_settings(self, embedder):
        engine = RetrievalEngine(embedder, RetrievalSettings(enabled=False))
        outcome = await engine.embed("cats")
        assert outcome.status == OutcomeStatus.DISABLED
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_no_embedder_means_disabled(self):
        engine = RetrievalEngine(None)
        assert engine.enabled is False
        assert (await engine.embed("cats")).status == OutcomeStatus.DISABLED

    @pytest.mark.asyncio
    async def test_backend_error_disables(self, make_embedder):
        engine = RetrievalEngine(make_embedder(fail=True))
        outcome = await engine.embed("cats")
        assert outcome.status == OutcomeStatus.FAILED
        assert engine.enabled is False
        assert "backend" in engine.last_error
        assert (await engine.embed("cats")).status == OutcomeStatus.DISABLED

    @pytest.mark.asyncio
    async def test_zero_vector_disables(self, make_embedder):
        engine = RetrievalEngine(make_embedder(zero=True))
        outcome = await engine.embed("cats")
        assert outcome.status == OutcomeStatus.FAILED
        assert engine.enabled is False

    @pytest.mark.asyncio
    async def test_empty_input_fails_without_disabling(self, retrieval, embedder):
        outcome = await retrieval.embed("   ")
        assert outcome.status == OutcomeStatus.FAILED
        assert retrieval.enabled is True
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_enable_after_failure(self, make_embedder):
        embedder = make_embedder(fail=True)
        engine = RetrievalEngine(embedder)
        await engine.embed("cats")
        embedder.fail = False
        engine.enable()
        assert engine.enabled is True
        assert engine.last_error is None
        assert (await engine.embed("cats")).ok

    @pytest.mark.asyncio
    async def test_embed_text_returns_empty_on_failure(self, make_embedder):
        engine = RetrievalEngine(make_embedder(fail=True))
        assert await engine.embed_text("cats") == []


class TestEmbedMemory:
    """Tests for embed_memory."""

    @pytest.mark.asyncio
    async def test_plain_memory_embeds_content(self, retrieval, vector_for):
        memory = MemoryUnit(name="music", content="Notes about chess")
        assert await retrieval.embed_memory(memory)
        assert memory.embedding == pytest.approx(vector_for("chess"))

    @pytest.mark.asyncio
    async def test_session_fuses_title_and_content(self, retrieval, embedder, vector_for):
        session = ChatSession(name="Cats", content="We talked about dogs.")
        assert await retrieval.embed_memory(session)
        assert embedder.calls == ["Cats", "We talked about dogs."]
        to_dogs = cosine_distance(session.embedding, vector_for("dogs"))
        to_cats = cosine_distance(session.embedding, vector_for("cats"))
        assert to_dogs < to_cats

    @pytest.mark.asyncio
    async def test_macros_are_replaced(self, retrieval, embedder, persona):
        await retrieval.embed_memory(MemoryUnit(content="{{char}} likes rain"))
        assert embedder.calls == [f"{persona.name} likes rain"]

    @pytest.mark.asyncio
    async def test_failure_leaves_memory_unembedded(self, make_embedder):
        engine = RetrievalEngine(make_embedder(fail=True))
        memory = MemoryUnit(content="cats")
        assert await engine.embed_memory(memory) is False
        assert memory.embedding is None


class TestRebuildIndex:
    """Tests for rebuild_index and the sources it collects."""

    @pytest.mark.asyncio
    async def test_collects_all_sources(self, brain, retrieval, persona, vector_for):
        archived = ChatSession(name="Old", content="cats", embedding=vector_for("cats"))
        unembedded = ChatSession(name="Blank", content="nothing")
        _archive(persona, archived, unembedded)
        brain.add_memory(MemoryUnit(content="dogs", embedding=vector_for("dogs")))
        brain.add_memory(MemoryUnit(content="paris", embedding=vector_for("paris"),
                                    insertion_mode=InsertionMode.NATURAL))
        world = WorldInfo(name="Lore")
        world.add_entry(MemoryUnit(content="music", embedding=vector_for("music")))
        world.add_entry(MemoryUnit(content="off", embedding=vector_for("chess"), enabled=False))
        persona.worlds.append(world)

        count = await retrieval.rebuild_index()
        assert count == 3
        assert retrieval.rebuild_count == 1
        contents = sorted(m.content for m in retrieval.vault.memories())
        assert contents == ["cats", "dogs", "music"]

    @pytest.mark.asyncio
    async def test_worlds_without_embeds_are_skipped(self, brain, retrieval, persona, vector_for):
        world = WorldInfo(name="Lore", do_embeds=False)
        world.add_entry(MemoryUnit(content="music", embedding=vector_for("music")))
        persona.worlds.append(world)
        assert await retrieval.rebuild_index() == 0

    @pytest.mark.asyncio
    async def test_without_persona(self, embedder):
        engine = RetrievalEngine(embedder)
        assert await engine.rebuild_index() == 0
        assert engine.rebuild_count == 1


class TestSearch:
    """Tests for RetrievalEngine.search."""

    @pytest.mark.asyncio
    async def test_lazy_rebuild_and_ranking(self, brain, retrieval, vector_for):
        brain.add_memory(MemoryUnit(content="cats", embedding=vector_for("cats")))
        brain.add_memory(MemoryUnit(content="dogs", embedding=vector_for("dogs")))
        results = await retrieval.search("tell me about cats")
        assert retrieval.rebuild_count == 1
        assert [r.memory.content for r in results] == ["cats"]

    @pytest.mark.asyncio
    async def test_empty_sources(self, brain, retrieval):
        assert await retrieval.search("cats") == []

    @pytest.mark.asyncio
    async def test_disabled_returns_nothing(self, brain, make_embedder, persona, vector_for):
        engine = RetrievalEngine(make_embedder(), RetrievalSettings(enabled=False), persona)
        brain.add_memory(MemoryUnit(content="cats", embedding=vector_for("cats")))
        assert await engine.search("cats") == []

    @pytest.mark.asyncio
    async def test_max_results_and_exclusion(self, brain, retrieval, vector_for):
        memories = [brain.add_memory(MemoryUnit(content=f"cats {i}", embedding=vector_for("cats")))
                    for i in range(5)]
        results = await retrieval.search("cats", max_results=2)
        assert len(results) == 2
        excluded = {memories[0].id, memories[1].id}
        results = await retrieval.search("cats", max_results=5, exclude_ids=excluded)
        assert len(results) == 3
        assert not excluded & {r.memory.id for r in results}

    @pytest.mark.asyncio
    async def test_roleplay_tone_rerank(self, retrieval, persona, vector_for):
        casual = ChatSession(name="Casual", content="cats", embedding=vector_for("cats"))
        roleplay = ChatSession(name="Adventure", content="cats", embedding=vector_for("cats"), is_roleplay=True)
        _archive(persona, casual, roleplay)

        rp_results = await retrieval.search("let's do a cats rp")
        assert [r.memory.name for r in rp_results] == ["Adventure", "Casual"]
        assert rp_results[0].distance == pytest.approx(-0.04, abs=1e-6)

        plain_results = await retrieval.search("cats")
        assert [r.memory.name for r in plain_results] == ["Casual", "Adventure"]
        assert plain_results[1].distance == pytest.approx(0.04, abs=1e-6)

    @pytest.mark.asyncio
    async def test_sticky_sessions_are_pushed_out(self, retrieval, persona, vector_for):
        sticky = ChatSession(name="Pinned", content="cats", embedding=vector_for("cats"), sticky=True)
        normal = ChatSession(name="Normal", content="cats", embedding=vector_for("cats"))
        _archive(persona, sticky, normal)
        results = await retrieval.search("cats")
        assert [r.memory.name for r in results] == ["Normal"]

    @pytest.mark.asyncio
    async def test_failure_during_search_disables(self, brain, make_embedder, persona, vector_for):
        embedder = make_embedder()
        engine = RetrievalEngine(embedder, persona=persona)
        brain.add_memory(MemoryUnit(content="cats", embedding=vector_for("cats")))
        embedder.fail = True
        assert await engine.search("cats") == []
        assert engine.enabled is False

    def test_is_roleplay_query(self, retrieval):
        assert retrieval.is_roleplay_query("rp time")
        assert retrieval.is_roleplay_query("Let's ROLEPLAY")
        assert not retrieval.is_roleplay_query("sharp thinking")


class TestDistance:
    """Tests for RetrievalEngine.distance."""

    @pytest.mark.asyncio
    async def test_between_texts(self, retrieval):
        assert await retrieval.distance("cats!", "more cats") == pytest.approx(0.0, abs=1e-6)
        assert await retrieval.distance("cats", "dogs") > 0.9

    @pytest.mark.asyncio
    async def test_memory_uses_stored_embedding(self, retrieval, embedder, vector_for):
        memory = MemoryUnit(content="irrelevant", embedding=vector_for("rain"))
        assert await retrieval.distance("rain", memory) == pytest.approx(0.0, abs=1e-6)
        assert embedder.calls == ["rain"]

    @pytest.mark.asyncio
    async def test_unavailable(self, make_embedder):
        engine = RetrievalEngine(make_embedder(fail=True))
        assert await engine.distance("cats", "cats") == 2.0
