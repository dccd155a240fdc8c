"""
API Routes: the boundary the surrounding application talks to.

ENDPOINTS:
- POST   /api/verify                  → verify one (url, claim) pair
- POST   /api/verify/batch            → verify many, "N of M completed"
- POST   /api/verify/batch/stream     → same, streamed as NDJSON progress events
- GET    /api/verifications           → list records (optionally by domain)
- GET    /api/verifications/{id}      → one record
- DELETE /api/verifications/{id}      → operator deletion
- GET    /api/trust-profiles          → per-domain trust, most cited first
- GET    /api/trust-profiles/summary  → headline counts
- GET    /api/sources                 → known-sources registry
- PUT    /api/sources                 → create/replace a registry entry
- DELETE /api/sources/{domain}        → remove a registry entry

ERRORS:
- InvalidInputError          → 400
- unknown id / domain        → 404
- PersistenceError           → 503 (store unavailable for this request)
- BatchUnavailableError      → 503 (store rejected every batch item)
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse

from citetrust.models.schemas import (
    DomainRisk,
    DomainTrustProfile,
    KnownSourceEntry,
    TrustSummary,
    VerificationRecord,
    VerifyBatchRequest,
    VerifyBatchResponse,
    VerifyRequest,
)
from citetrust.services.errors import (
    BatchUnavailableError,
    InvalidInputError,
    PersistenceError,
)
from citetrust.services.orchestrator import VerificationOrchestrator, get_orchestrator
from citetrust.services.source_registry import SourceRegistry, get_source_registry
from citetrust.services.trust.domain_aggregator import (
    DomainTrustAggregator,
    filter_profiles,
    summarize,
)
from citetrust.services.verification_store import VerificationStore, get_verification_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["api"])


def get_aggregator(
    store: VerificationStore = Depends(get_verification_store),
    registry: SourceRegistry = Depends(get_source_registry),
) -> DomainTrustAggregator:
    return DomainTrustAggregator(store, registry)


# =============================================================================
# VERIFICATION
# =============================================================================

@router.post("/verify", response_model=VerificationRecord)
async def verify(
    request: VerifyRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> VerificationRecord:
    """
    Verify whether a source supports a claim.

    Fetch or embedding problems still return a record (degraded status,
    no similarity score); only invalid input and storage failures error.

    Example:
        POST /api/verify
        {"source_url": "https://a.test/doc", "claim_text": "The sky is blue"}
    """
    try:
        return await orchestrator.verify(request.source_url, request.claim_text)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/verify/batch", response_model=VerifyBatchResponse)
async def verify_batch(
    request: VerifyBatchRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> VerifyBatchResponse:
    """
    Verify a list of citations sequentially.

    Individual failures are reported in `failures` and never abort the
    batch. completed_count tells how many of requested_count produced a
    record.
    """
    items = [(item.url, item.claim) for item in request.items]
    logger.info(f"Batch verification of {len(items)} citations")

    try:
        result = await orchestrator.verify_batch(items)
    except BatchUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return VerifyBatchResponse(
        results=result.results,
        completed_count=result.completed_count,
        requested_count=result.requested_count,
        failures=result.failures,
        cancelled=result.cancelled,
    )


@router.post("/verify/batch/stream")
async def verify_batch_stream(
    request: VerifyBatchRequest,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """
    Verify a batch and stream progress as newline-delimited JSON.

    One {"type": "progress", ...} line per item, then one
    {"type": "result", ...} line. If the store rejected every item the last
    line is {"type": "error", "status_code": 503, ...} instead, the streamed
    counterpart of the 503 from /verify/batch. If the client disconnects,
    the item in flight still completes and persists, and no further items
    start.
    """
    items = [(item.url, item.claim) for item in request.items]

    async def event_stream():
        completed = 0
        persistence_failures = 0
        async for event in orchestrator.iter_batch(items):
            if event.record is not None:
                completed += 1
            elif isinstance(event.exception, PersistenceError):
                persistence_failures += 1
            yield json.dumps({
                "type": "progress",
                "index": event.index,
                "progress": event.progress,
                "record": event.record.model_dump(mode="json") if event.record else None,
                "error": event.error,
            }) + "\n"

        if persistence_failures == len(items):
            logger.error(f"Store unavailable: none of {len(items)} streamed verifications saved")
            yield json.dumps({
                "type": "error",
                "status_code": 503,
                "detail": f"Store unavailable: none of {len(items)} verifications could be saved",
            }) + "\n"
            return

        yield json.dumps({
            "type": "result",
            "completed_count": completed,
            "requested_count": len(items),
        }) + "\n"

    return StreamingResponse(event_stream(), media_type="application/x-ndjson")


# =============================================================================
# VERIFICATION RECORDS
# =============================================================================

@router.get("/verifications", response_model=list[VerificationRecord])
async def list_verifications(
    domain: Optional[str] = Query(default=None, description="Only records from this domain"),
    store: VerificationStore = Depends(get_verification_store),
) -> list[VerificationRecord]:
    if domain:
        return await store.list_by_domain(domain)
    return await store.list_all()


@router.get("/verifications/{record_id}", response_model=VerificationRecord)
async def get_verification(
    record_id: str,
    store: VerificationStore = Depends(get_verification_store),
) -> VerificationRecord:
    record = await store.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Verification {record_id} not found")
    return record


@router.delete("/verifications/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_verification(
    record_id: str,
    store: VerificationStore = Depends(get_verification_store),
) -> Response:
    try:
        deleted = await store.delete(record_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Verification {record_id} not found")
    logger.info(f"Deleted verification {record_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# TRUST PROFILES
# =============================================================================

@router.get("/trust-profiles", response_model=list[DomainTrustProfile])
async def trust_profiles(
    min_trust_score: Optional[int] = Query(default=None, ge=0, le=100),
    risk: Optional[DomainRisk] = Query(default=None),
    verified_only: bool = Query(default=False),
    limit: Optional[int] = Query(default=None, ge=1),
    aggregator: DomainTrustAggregator = Depends(get_aggregator),
) -> list[DomainTrustProfile]:
    """
    Per-domain trust profiles, most cited first.

    Example:
        GET /api/trust-profiles?risk=high&limit=10
    """
    profiles = await aggregator.aggregate()
    return filter_profiles(
        profiles,
        min_trust_score=min_trust_score,
        risk=risk,
        verified_only=verified_only,
        limit=limit,
    )


@router.get("/trust-profiles/summary", response_model=TrustSummary)
async def trust_summary(
    aggregator: DomainTrustAggregator = Depends(get_aggregator),
) -> TrustSummary:
    return summarize(await aggregator.aggregate())


# =============================================================================
# KNOWN-SOURCES REGISTRY
# =============================================================================

@router.get("/sources", response_model=list[KnownSourceEntry])
async def list_sources(
    registry: SourceRegistry = Depends(get_source_registry),
) -> list[KnownSourceEntry]:
    return await registry.list_known_sources()


@router.put("/sources", response_model=KnownSourceEntry)
async def upsert_source(
    entry: KnownSourceEntry,
    registry: SourceRegistry = Depends(get_source_registry),
) -> KnownSourceEntry:
    try:
        return await registry.upsert(entry)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.delete("/sources/{domain}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(
    domain: str,
    registry: SourceRegistry = Depends(get_source_registry),
) -> Response:
    try:
        deleted = await registry.delete(domain)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Source {domain} not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
