"""
Verification Orchestrator: fetch → embed → score → persist.

WHAT THIS DOES:
Runs a single citation verification end to end, and runs batches of them
with progress reporting.

SINGLE VERIFICATION (verify):
1. Validate input (InvalidInputError, before any I/O)
2. Fetch the source content
   - failure → degraded record with the fetcher's coarse status/risk
3. Embed the claim and the content concurrently
4. Both embeddings available → similarity scorer overwrites the coarse
   status AND risk together; otherwise the coarse pair is kept
5. Persist (one transaction) and return the record

Only steps 1 and 5 can raise. A fetch or embedding problem always produces
a (degraded) record instead of an error.

BATCH VERIFICATION (iter_batch / verify_batch):
- Items run strictly one after another, in input order. This keeps load on
  the shared embedding model and the fetcher predictable, and keeps the
  progress sequence monotonic.
- After every item a progress event is emitted:
      progress = round(done / total * 100)     → ends at exactly 100
- A failing item is recorded and skipped; siblings are unaffected.
- Cancellation: once cancel_event is set no new item starts. If the
  consuming task itself is cancelled, the in-flight item is shielded and
  still persists.

USAGE:
    orchestrator = get_orchestrator()
    record = await orchestrator.verify("https://a.test/doc", "The sky is blue")

    result = await orchestrator.verify_batch(
        [("https://a.test/doc", "The sky is blue")],
        on_progress=lambda pct: print(f"{pct}%"),
    )
    print(f"Verified {result.completed_count} of {result.requested_count}")
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit

from citetrust.config import get_settings
from citetrust.models.schemas import BatchFailure, HallucinationRisk, VerificationRecord
from citetrust.services.embeddings import EmbeddingEngine, get_embedding_engine
from citetrust.services.errors import (
    BatchUnavailableError,
    InvalidInputError,
    PersistenceError,
)
from citetrust.services.fetcher import FetchResult, SourceFetcher
from citetrust.services.trust.domain_aggregator import domain_from_url
from citetrust.services.trust.similarity_scorer import (
    ClassificationThresholds,
    SimilarityScorer,
)
from citetrust.services.verification_store import VerificationStore, get_verification_store

logger = logging.getLogger(__name__)


def progress_percent(done: int, total: int) -> int:
    """round(done / total * 100) with .5 rounded up, in integer arithmetic."""
    return (200 * done + total) // (2 * total)


def validate_input(url: str, claim: str) -> None:
    """
    Reject malformed input before any I/O.

    Raises:
        InvalidInputError: URL is not absolute http(s) with a host, or the
            claim is blank
    """
    if not claim or not claim.strip():
        raise InvalidInputError("claim_text must not be empty")
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError as e:
        raise InvalidInputError(f"Malformed URL: {url!r}") from e
    if parts.scheme not in ("http", "https") or not host:
        raise InvalidInputError(f"URL must be an absolute http(s) URL: {url!r}")


@dataclass
class BatchProgress:
    """One step of a batch: emitted after each item, in input order."""
    index: int
    total: int
    progress: int
    url: str
    record: Optional[VerificationRecord] = None
    exception: Optional[Exception] = None

    @property
    def error(self) -> Optional[str]:
        return str(self.exception) if self.exception is not None else None


@dataclass
class BatchResult:
    """Outcome of a batch: every record produced, plus what failed."""
    requested_count: int
    results: list[VerificationRecord] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def completed_count(self) -> int:
        return len(self.results)


def _drain(task: asyncio.Future) -> None:
    # Retrieve the outcome of an item that finished after its batch was cancelled
    if not task.cancelled() and task.exception() is not None:
        logger.warning(f"Background verification failed after cancellation: {task.exception()}")


class VerificationOrchestrator:
    """
    Coordinates the fetcher, embedding engine, scorer and store.

    Stateless apart from its collaborators; one instance serves all
    requests, and independent verify() calls may run concurrently.
    """

    def __init__(
        self,
        fetcher: SourceFetcher,
        engine: EmbeddingEngine,
        scorer: SimilarityScorer,
        store: VerificationStore,
    ):
        self.fetcher = fetcher
        self.engine = engine
        self.scorer = scorer
        self.store = store

    # =========================================================================
    # SINGLE VERIFICATION
    # =========================================================================

    async def verify(self, url: str, claim: str) -> VerificationRecord:
        """
        Verify one claim against its cited source.

        Args:
            url: Absolute http(s) URL of the source
            claim: The claim attributed to the source

        Returns:
            The persisted VerificationRecord (possibly degraded)

        Raises:
            InvalidInputError: malformed URL or empty claim (no I/O done)
            PersistenceError: the record could not be written
        """
        validate_input(url, claim)
        url = url.strip()

        fetched = await self._fetch(url)

        similarity = None
        status = fetched.fallback_status
        risk = fetched.fallback_risk

        if fetched.ok:
            claim_vec, source_vec = await asyncio.gather(
                self.engine.embed(claim),
                self.engine.embed(fetched.content),
            )
            if claim_vec is not None and source_vec is not None:
                scored = self.scorer.score(claim_vec, source_vec)
                similarity = scored.similarity
                status, risk = scored.status, scored.risk
            else:
                logger.info(f"Embeddings unavailable, keeping coarse status for {url}")

        record = VerificationRecord(
            id=str(uuid.uuid4()),
            source_url=url,
            claim_text=claim,
            source_domain=domain_from_url(url),
            source_content=fetched.content,
            fetch_error=fetched.error,
            similarity_score=similarity,
            verification_status=status,
            hallucination_risk=risk,
            verified_at=datetime.now(timezone.utc),
        )

        await self._persist(record)

        similarity_str = f"{similarity:.2f}" if similarity is not None else "n/a"
        logger.info(
            f"Verified {url}: status={status.value}, "
            f"risk={risk.value if risk else None}, similarity={similarity_str}"
        )
        return record

    async def _fetch(self, url: str) -> FetchResult:
        try:
            return await self.fetcher.fetch(url)
        except Exception as e:
            # Fetchers report failures in the result; anything raised is a bug
            # in the collaborator and still only degrades this one record
            logger.exception(f"Fetcher raised for {url}")
            return FetchResult(
                url=url,
                error=str(e) or type(e).__name__,
                fallback_risk=HallucinationRisk.MEDIUM,
            )

    async def _persist(self, record: VerificationRecord) -> None:
        try:
            await self.store.put(record)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Could not store verification {record.id}: {e}") from e

    # =========================================================================
    # BATCH VERIFICATION
    # =========================================================================

    async def iter_batch(
        self,
        items: Sequence[tuple[str, str]],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[BatchProgress]:
        """
        Verify (url, claim) pairs sequentially, yielding progress per item.

        The progress values are non-decreasing and the last event of an
        uncancelled batch carries exactly 100.
        """
        total = len(items)

        for index, (url, claim) in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Batch cancelled after {index} of {total} items")
                return

            task = asyncio.ensure_future(self.verify(url, claim))
            record = None
            exception = None
            try:
                record = await asyncio.shield(task)
            except asyncio.CancelledError:
                logger.info(f"Batch abandoned; item {index + 1} of {total} finishes in background")
                task.add_done_callback(_drain)
                raise
            except (InvalidInputError, PersistenceError) as e:
                logger.warning(f"Batch item {index + 1}/{total} failed: {e}")
                exception = e
            except Exception as e:
                logger.exception(f"Batch item {index + 1}/{total} failed unexpectedly")
                exception = e

            yield BatchProgress(
                index=index,
                total=total,
                progress=progress_percent(index + 1, total),
                url=url,
                record=record,
                exception=exception,
            )

    async def verify_batch(
        self,
        items: Sequence[tuple[str, str]],
        on_progress: Optional[Callable[[int], None]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """
        Verify a batch and collect the outcome.

        Args:
            items: (url, claim) pairs
            on_progress: called with each integer percentage (0-100)
            cancel_event: set it to stop scheduling further items

        Returns:
            BatchResult with every record produced ("N of M completed")

        Raises:
            BatchUnavailableError: the store rejected every single item
        """
        result = BatchResult(requested_count=len(items))

        if not items:
            if on_progress:
                on_progress(100)
            return result

        processed = 0
        persistence_failures = 0
        async for event in self.iter_batch(items, cancel_event):
            processed += 1
            if event.record is not None:
                result.results.append(event.record)
            else:
                result.failures.append(
                    BatchFailure(index=event.index, url=event.url, error=event.error or "unknown error")
                )
                if isinstance(event.exception, PersistenceError):
                    persistence_failures += 1
            if on_progress:
                on_progress(event.progress)

        result.cancelled = processed < len(items)

        if not result.cancelled and persistence_failures == len(items):
            raise BatchUnavailableError(
                f"Store unavailable: none of {len(items)} verifications could be saved",
                failures=result.failures,
            )

        logger.info(
            f"Verified {result.completed_count} of {result.requested_count} citations"
            + (" (cancelled)" if result.cancelled else "")
        )
        return result


@lru_cache
def get_orchestrator() -> VerificationOrchestrator:
    """Process-wide orchestrator wired to the shared collaborators."""
    settings = get_settings()
    return VerificationOrchestrator(
        fetcher=SourceFetcher(),
        engine=get_embedding_engine(),
        scorer=SimilarityScorer(ClassificationThresholds.from_settings(settings)),
        store=get_verification_store(),
    )
