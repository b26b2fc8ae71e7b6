"""Tests for retrieval, answer synthesis and the query pipeline."""
from unittest.mock import AsyncMock

import pytest

from docqa.exceptions import ProviderError, ValidationError
from docqa.rag.answer import AnswerSynthesizer
from docqa.rag.ingest import IngestPipeline
from docqa.rag.query import NO_INFORMATION_ANSWER, QueryPipeline
from docqa.rag.retriever import CONTEXT_DELIMITER, RetrievalResult, Retriever, format_context

CAT_DOC = "The cat sleeps all day. The cat purrs when the cat is happy. " * 2
MIXED_DOC = (
    "A cat and a dog share one house. Sometimes the dog chases the cat around, "
    "but mostly they sleep next to each other by the warm fireplace in the living room. "
    "Neighbours say the pair has been inseparable since the winter they arrived together."
)
DOG_DOC = "The dog barks at the mailman. A good dog fetches the ball every morning."


async def _ingest(store, batcher, title, content):
    pipeline = IngestPipeline(store=store, batcher=batcher)
    return await pipeline.ingest_document(title, content, "text/plain")


def _query_pipeline(store, batcher, generation_provider, **kwargs) -> QueryPipeline:
    return QueryPipeline(
        retriever=Retriever(store=store, batcher=batcher, match_threshold=0.3, match_count=5),
        synthesizer=AnswerSynthesizer(generation_provider),
        **kwargs,
    )


class TestRetriever:
    @pytest.mark.asyncio
    async def test_ranks_results_and_resolves_titles(self, store, keyword_batcher) -> None:
        cat = await _ingest(store, keyword_batcher, "Cats", CAT_DOC)
        mixed = await _ingest(store, keyword_batcher, "Cats and dogs", MIXED_DOC)
        await _ingest(store, keyword_batcher, "Dogs", DOG_DOC)
        retriever = Retriever(store=store, batcher=keyword_batcher, match_threshold=0.3, match_count=5)

        results = await retriever.retrieve("Where does the cat sleep?")

        assert [r.document_id for r in results] == [cat.document_id, mixed.document_id]
        assert [r.document_title for r in results] == ["Cats", "Cats and dogs"]
        assert results[0].similarity > results[1].similarity >= 0.3

    @pytest.mark.asyncio
    async def test_respects_match_count(self, store, keyword_batcher) -> None:
        await _ingest(store, keyword_batcher, "Cats", CAT_DOC)
        await _ingest(store, keyword_batcher, "Cats and dogs", MIXED_DOC)
        retriever = Retriever(store=store, batcher=keyword_batcher, match_threshold=0.0, match_count=1)

        results = await retriever.retrieve("cat")

        assert len(results) == 1
        assert results[0].document_title == "Cats"

    @pytest.mark.asyncio
    async def test_zero_match_count_is_honoured(self, store, keyword_batcher) -> None:
        await _ingest(store, keyword_batcher, "Cats", CAT_DOC)
        retriever = Retriever(store=store, batcher=keyword_batcher, match_threshold=0.0, match_count=5)

        assert await retriever.retrieve("cat", match_count=0) == []
        assert len(await retriever.retrieve("cat")) == 1
        assert Retriever(store=store, batcher=keyword_batcher, match_count=0).match_count == 0

    @pytest.mark.asyncio
    async def test_blank_question_returns_nothing(self, store, keyword_batcher, keyword_provider) -> None:
        retriever = Retriever(store=store, batcher=keyword_batcher)

        assert await retriever.retrieve("   ") == []
        assert keyword_provider.calls == []

    def test_format_context_keeps_rank_order(self) -> None:
        results = [
            RetrievalResult(1, "d1", "First", 0, " top chunk ", 0.9),
            RetrievalResult(2, "d2", None, 3, "second chunk", 0.5),
        ]

        context = format_context(results)

        assert context == (
            "[Source 1: First]\ntop chunk" + CONTEXT_DELIMITER + "[Source 2: Unknown]\nsecond chunk"
        )


class TestQueryPipeline:
    @pytest.mark.asyncio
    async def test_empty_store_short_circuits(self, store, keyword_batcher, generation_provider) -> None:
        pipeline = _query_pipeline(store, keyword_batcher, generation_provider)

        response = await pipeline.answer("What does the cat do?")

        assert response.answer == NO_INFORMATION_ANSWER
        assert response.sources == []
        assert response.found_information is False
        generation_provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_below_threshold_short_circuits(self, store, keyword_batcher, generation_provider) -> None:
        await _ingest(store, keyword_batcher, "Dogs", DOG_DOC)
        pipeline = _query_pipeline(store, keyword_batcher, generation_provider)

        response = await pipeline.answer("Tell me about the fish")

        assert response.to_dict() == {"answer": NO_INFORMATION_ANSWER, "sources": []}
        generation_provider.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_answer_with_ranked_truncated_sources(self, store, keyword_batcher, generation_provider) -> None:
        await _ingest(store, keyword_batcher, "Cats and dogs", MIXED_DOC)
        await _ingest(store, keyword_batcher, "Cats", CAT_DOC)
        pipeline = _query_pipeline(store, keyword_batcher, generation_provider)

        response = await pipeline.answer("What does the cat do?")

        assert response.answer == "Cats sit on mats [Source 1]."
        assert [s.document_title for s in response.sources] == ["Cats", "Cats and dogs"]
        similarities = [s.similarity for s in response.sources]
        assert similarities == sorted(similarities, reverse=True)
        for source in response.sources:
            assert len(source.chunk_text) <= 203
        assert len(MIXED_DOC) > 200
        assert response.sources[1].chunk_text == MIXED_DOC[:200] + "..."

        generation_provider.generate.assert_awaited_once()
        messages = generation_provider.generate.await_args.args[0]
        assert messages[-1] == {"role": "user", "content": "What does the cat do?"}
        system = messages[0]["content"]
        assert system.index("[Source 1: Cats]") < system.index("[Source 2: Cats and dogs]")
        assert CONTEXT_DELIMITER in system

    @pytest.mark.asyncio
    async def test_generation_failure_propagates(self, store, keyword_batcher, generation_provider) -> None:
        await _ingest(store, keyword_batcher, "Cats", CAT_DOC)
        generation_provider.generate = AsyncMock(
            side_effect=ProviderError("model overloaded", stage="generation", status_code=503)
        )
        pipeline = _query_pipeline(store, keyword_batcher, generation_provider)

        with pytest.raises(ProviderError) as exc_info:
            await pipeline.answer("cat?")

        assert exc_info.value.stage == "generation"
        generation_provider.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_generation_failure_can_degrade(self, store, keyword_batcher, generation_provider) -> None:
        await _ingest(store, keyword_batcher, "Cats", CAT_DOC)
        generation_provider.generate = AsyncMock(
            side_effect=ProviderError("model overloaded", stage="generation")
        )
        pipeline = _query_pipeline(store, keyword_batcher, generation_provider, fallback_on_error=True)

        response = await pipeline.answer("cat?")

        assert response.degraded is True
        generation_provider.generate.assert_awaited_once()
        assert "Cats" in response.answer
        assert response.to_dict()["degraded"] is True
        assert len(response.sources) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("question", ["", "   ", "x" * 2001])
    async def test_rejects_invalid_questions(self, store, keyword_batcher, generation_provider, question) -> None:
        pipeline = _query_pipeline(store, keyword_batcher, generation_provider, max_question_chars=2000)

        with pytest.raises(ValidationError):
            await pipeline.answer(question)
