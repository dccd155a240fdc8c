"""Shared fixtures. Fakes live in tests/fakes.py."""

import pytest

from citetrust.services.embeddings import EmbeddingEngine
from citetrust.services.orchestrator import VerificationOrchestrator
from citetrust.services.source_registry import InMemorySourceRegistry
from citetrust.services.trust.similarity_scorer import SimilarityScorer
from citetrust.services.verification_store import InMemoryVerificationStore
from tests.fakes import StubFetcher, VocabularyProvider


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def provider():
    return VocabularyProvider()


@pytest.fixture
def engine(provider):
    return EmbeddingEngine(provider)


@pytest.fixture
def store():
    return InMemoryVerificationStore()


@pytest.fixture
def registry():
    return InMemorySourceRegistry()


@pytest.fixture
def fetcher():
    return StubFetcher({
        "https://a.test/doc": "The sky is blue and vast",
        "https://www.example.com/page": "Water boils at one hundred degrees at sea level",
        "https://example.com/other": "Unrelated gardening advice about tomatoes",
    })


@pytest.fixture
def orchestrator(fetcher, engine, store):
    return VerificationOrchestrator(
        fetcher=fetcher,
        engine=engine,
        scorer=SimilarityScorer(),
        store=store,
    )
