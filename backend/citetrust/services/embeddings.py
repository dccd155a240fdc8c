"""
Embedding Engine.

WHAT THIS DOES:
Converts text into fixed-length (384-dimensional), L2-normalized vectors so
that a plain dot product between two vectors equals their cosine similarity.

LIFECYCLE:
═══════════════════════════════════════════════════════════════════════════════
The model is expensive to load, so it is loaded LAZILY and AT MOST ONCE per
process, on the first embed() call:

    UNINITIALIZED ──first embed()──▶ INITIALIZING ──ok──▶ READY
                                          │
                                          └──error──▶ FAILED (terminal)

- Callers that arrive while INITIALIZING wait on the same in-flight load
  (single-flight) instead of starting their own.
- FAILED is permanent for the process: every later embed() returns None
  immediately, without retrying. Callers degrade (no similarity score).
═══════════════════════════════════════════════════════════════════════════════

PROVIDERS:
- SentenceTransformerProvider (default): all-MiniLM-L6-v2 running in-process.
  Loading and encoding are blocking, so both run in a worker thread.
- OpenAIEmbeddingProvider: text-embedding-3-small, asked for 384 dimensions
  so vectors are interchangeable with the local model's shape.

TRUNCATION:
Texts longer than embedding_max_chars (512) are cut before encoding. This
trades a little recall on long pages for predictable latency.

USAGE:
    engine = get_embedding_engine()

    vector = await engine.embed("The sky is blue")
    if vector is None:
        # Engine unavailable → caller keeps its coarse classification
        ...
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from functools import lru_cache
from typing import Optional

import numpy as np
from openai import AsyncOpenAI
from sentence_transformers import SentenceTransformer

from citetrust.config import Settings, get_settings
from citetrust.services.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = 384
MAX_CHARS = 512


class EngineState(str, Enum):
    """Initialization state of the embedding engine."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


# =============================================================================
# PROVIDERS
# =============================================================================

class EmbeddingProvider(ABC):
    """
    Source of raw embedding vectors.

    load() acquires the model (download weights, build a client) and may
    raise on failure. encode() is only called after load() succeeded.
    """

    name: str = "provider"

    @abstractmethod
    async def load(self) -> None:
        pass

    @abstractmethod
    async def encode(self, text: str) -> Sequence[float]:
        pass


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model, loaded in a worker thread."""

    def __init__(self, model_name: str, device: Optional[str] = None):
        self.model_name = model_name
        self.device = device
        self.name = f"local:{model_name}"
        self._model: Optional[SentenceTransformer] = None

    async def load(self) -> None:
        # Downloads weights on first use, can take a while
        self._model = await asyncio.to_thread(
            SentenceTransformer, self.model_name, device=self.device
        )

    async def encode(self, text: str) -> Sequence[float]:
        if self._model is None:
            raise EmbeddingUnavailable(f"Model {self.model_name} is not loaded")
        vector = await asyncio.to_thread(
            self._model.encode, text, normalize_embeddings=True
        )
        return vector.tolist()


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Remote embeddings via the OpenAI API."""

    def __init__(self, api_key: str, model: str, dimensions: int = EMBEDDING_DIMENSIONS):
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.name = f"openai:{model}"
        self.client: Optional[AsyncOpenAI] = None

    async def load(self) -> None:
        if not self.api_key:
            raise EmbeddingUnavailable("OPENAI_API_KEY is not configured")
        self.client = AsyncOpenAI(api_key=self.api_key)

    async def encode(self, text: str) -> Sequence[float]:
        if self.client is None:
            raise EmbeddingUnavailable("OpenAI client is not initialized")
        response = await self.client.embeddings.create(
            model=self.model,
            input=text,
            dimensions=self.dimensions,
        )
        return response.data[0].embedding


def build_provider(settings: Settings) -> EmbeddingProvider:
    """Create the provider named by settings.embedding_provider."""
    if settings.embedding_provider == "local":
        return SentenceTransformerProvider(settings.embedding_model_name)
    if settings.embedding_provider == "openai":
        return OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            dimensions=settings.embedding_dimensions,
        )
    raise ValueError(f"Unknown embedding provider: {settings.embedding_provider!r}")


# =============================================================================
# ENGINE
# =============================================================================

class EmbeddingEngine:
    """
    Lazily-initialized, process-shared embedding model.

    Once READY, embed() calls are independent and may run concurrently:
    the model is only read, never mutated, during inference.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        dimensions: int = EMBEDDING_DIMENSIONS,
        max_chars: int = MAX_CHARS,
    ):
        self.provider = provider
        self.dimensions = dimensions
        self.max_chars = max_chars
        self._state = EngineState.UNINITIALIZED
        self._init_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> EngineState:
        return self._state

    # =========================================================================
    # INITIALIZATION (single-flight)
    # =========================================================================

    async def initialize(self) -> bool:
        """
        Load the model if needed and report whether the engine is usable.

        Concurrent callers share one load. The load itself is shielded, so a
        caller being cancelled does not abort initialization for the others.

        Returns:
            True if READY, False if FAILED
        """
        if self._state is EngineState.READY:
            return True
        if self._state is EngineState.FAILED:
            return False

        if self._init_task is None:
            self._state = EngineState.INITIALIZING
            logger.info(f"Loading embedding model ({self.provider.name})...")
            self._init_task = asyncio.ensure_future(self._load())

        return await asyncio.shield(self._init_task)

    async def _load(self) -> bool:
        try:
            await self.provider.load()
        except Exception as e:
            self._state = EngineState.FAILED
            logger.error(
                f"Embedding model {self.provider.name} failed to load, "
                f"similarity scoring disabled for this process: {e}"
            )
            return False

        self._state = EngineState.READY
        logger.info(f"Embedding model ready ({self.provider.name})")
        return True

    # =========================================================================
    # INFERENCE
    # =========================================================================

    async def embed(self, text: str) -> Optional[list[float]]:
        """
        Embed a single text into a normalized vector.

        Args:
            text: Any text; only the first max_chars characters are encoded

        Returns:
            List of `dimensions` floats with L2 norm 1.0, or None when the
            engine is unavailable or this particular call failed
        """
        if not await self.initialize():
            return None

        if len(text) > self.max_chars:
            text = text[:self.max_chars]

        try:
            raw = await self.provider.encode(text)
        except Exception as e:
            # One bad call does not poison the engine
            logger.warning(f"Embedding inference failed: {e}")
            return None

        return self._normalize(raw)

    def _normalize(self, raw: Sequence[float]) -> Optional[list[float]]:
        vector = np.asarray(raw, dtype=np.float64)

        if vector.shape != (self.dimensions,):
            logger.warning(
                f"Embedding has shape {vector.shape}, expected ({self.dimensions},); discarding"
            )
            return None

        norm = float(np.linalg.norm(vector))
        if norm == 0.0 or not np.isfinite(norm):
            logger.warning("Embedding has zero or non-finite norm; discarding")
            return None

        return (vector / norm).tolist()


# =============================================================================
# PROCESS-WIDE INSTANCE
# =============================================================================

@lru_cache
def get_embedding_engine() -> EmbeddingEngine:
    """
    The one embedding engine shared by every request in this process.

    Construction is cheap; the model itself loads on the first embed().
    """
    settings = get_settings()
    return EmbeddingEngine(
        build_provider(settings),
        dimensions=settings.embedding_dimensions,
        max_chars=settings.embedding_max_chars,
    )
