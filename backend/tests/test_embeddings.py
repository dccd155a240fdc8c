"""
Tests for the Embedding Engine: lazy single-flight loading, permanent
failure, truncation and normalization.

Run with: pytest backend/tests/test_embeddings.py -v
"""

import asyncio
import math
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from citetrust.config import Settings
from citetrust.services.embeddings import (
    EmbeddingEngine,
    EngineState,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
    build_provider,
)
from tests.fakes import VocabularyProvider


def _norm(vector: list[float]) -> float:
    return math.sqrt(sum(x * x for x in vector))


# =============================================================================
# NORMALIZATION
# =============================================================================

@pytest.mark.asyncio
async def test_embed_returns_unit_vector(engine):
    for text in ["The sky is blue", "a a a b", "Water boils at one hundred degrees"]:
        vector = await engine.embed(text)

        assert vector is not None
        assert len(vector) == 384
        assert _norm(vector) == pytest.approx(1.0, abs=1e-9), f"Norm off for {text!r}"


@pytest.mark.asyncio
async def test_identical_texts_have_dot_product_one(engine):
    a = await engine.embed("The sky is blue")
    b = await engine.embed("The sky is blue")

    assert sum(x * y for x, y in zip(a, b)) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_zero_vector_is_discarded(engine):
    # No words → all-zero vector, which cannot be normalized
    assert await engine.embed("!!! ???") is None
    assert engine.state is EngineState.READY


@pytest.mark.asyncio
async def test_wrong_dimensionality_is_discarded():
    engine = EmbeddingEngine(VocabularyProvider(dimensions=10), dimensions=384)

    assert await engine.embed("The sky is blue") is None


# =============================================================================
# TRUNCATION
# =============================================================================

@pytest.mark.asyncio
async def test_long_text_is_truncated_before_encoding(engine, provider):
    await engine.embed("word " * 400)

    assert len(provider.encoded[-1]) == 512


@pytest.mark.asyncio
async def test_short_text_is_encoded_unchanged(engine, provider):
    await engine.embed("The sky is blue")

    assert provider.encoded[-1] == "The sky is blue"


# =============================================================================
# LAZY, SINGLE-FLIGHT INITIALIZATION
# =============================================================================

@pytest.mark.asyncio
async def test_model_is_not_loaded_until_first_embed(engine, provider):
    assert engine.state is EngineState.UNINITIALIZED
    assert provider.load_calls == 0

    await engine.embed("hello")

    assert engine.state is EngineState.READY
    assert provider.load_calls == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_initialization():
    gate = asyncio.Event()
    provider = VocabularyProvider(gate=gate)
    engine = EmbeddingEngine(provider)

    tasks = [asyncio.ensure_future(engine.embed(f"text number {i}")) for i in range(5)]
    for _ in range(5):
        await asyncio.sleep(0)

    assert engine.state is EngineState.INITIALIZING
    assert provider.load_calls == 1

    gate.set()
    vectors = await asyncio.gather(*tasks)

    assert all(v is not None for v in vectors)
    assert provider.load_calls == 1, "Every caller should wait on the same load"


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_abort_initialization():
    gate = asyncio.Event()
    provider = VocabularyProvider(gate=gate)
    engine = EmbeddingEngine(provider)

    first = asyncio.ensure_future(engine.embed("first"))
    second = asyncio.ensure_future(engine.embed("second"))
    await asyncio.sleep(0)

    first.cancel()
    gate.set()

    assert await second is not None
    assert engine.state is EngineState.READY
    with pytest.raises(asyncio.CancelledError):
        await first


# =============================================================================
# PERMANENT FAILURE
# =============================================================================

@pytest.mark.asyncio
async def test_failed_initialization_is_permanent():
    provider = VocabularyProvider(fail_load=True)
    engine = EmbeddingEngine(provider)

    assert await engine.embed("hello") is None
    assert engine.state is EngineState.FAILED

    # No retry on later calls
    assert await engine.embed("hello again") is None
    assert provider.load_calls == 1
    assert provider.encoded == []


@pytest.mark.asyncio
async def test_single_inference_failure_does_not_disable_engine(engine, provider):
    await engine.embed("warm up")
    provider.fail_next_encode = True

    assert await engine.embed("this call fails") is None
    assert engine.state is EngineState.READY
    assert await engine.embed("this call works") is not None


@pytest.mark.asyncio
async def test_openai_provider_without_key_fails_initialization():
    engine = EmbeddingEngine(OpenAIEmbeddingProvider(api_key="", model="text-embedding-3-small"))

    assert await engine.embed("hello") is None
    assert engine.state is EngineState.FAILED


@pytest.mark.asyncio
async def test_openai_provider_requests_configured_dimensions():
    provider = OpenAIEmbeddingProvider(api_key="sk-test", model="text-embedding-3-small")
    response = SimpleNamespace(data=[SimpleNamespace(embedding=[3.0, 4.0] + [0.0] * 382)])

    with patch("citetrust.services.embeddings.AsyncOpenAI") as client_cls:
        client_cls.return_value.embeddings.create = AsyncMock(return_value=response)
        vector = await EmbeddingEngine(provider).embed("hello")

    assert vector[:2] == pytest.approx([0.6, 0.8])
    client_cls.return_value.embeddings.create.assert_awaited_once_with(
        model="text-embedding-3-small", input="hello", dimensions=384,
    )


# =============================================================================
# PROVIDER SELECTION
# =============================================================================

def test_build_provider_local_by_default():
    provider = build_provider(Settings())

    assert isinstance(provider, SentenceTransformerProvider)
    assert provider.model_name == "sentence-transformers/all-MiniLM-L6-v2"


def test_build_provider_openai():
    provider = build_provider(Settings(embedding_provider="openai", openai_api_key="sk-test"))

    assert isinstance(provider, OpenAIEmbeddingProvider)
    assert provider.dimensions == 384


def test_build_provider_rejects_unknown_name():
    with pytest.raises(ValueError):
        build_provider(Settings(embedding_provider="carrier-pigeon"))
