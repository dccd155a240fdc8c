"""
Pydantic schemas for API request/response validation.

These define the shape of data that goes in and out of the API, and double
as the in-process domain types passed between services.

FLOW OVERVIEW:
==============
1. Operator sends VerifyRequest (or VerifyBatchRequest) to /api/verify
2. Orchestrator fetches, embeds, scores and persists → VerificationRecord
3. Aggregator merges records with the KnownSourceEntry registry
   → DomainTrustProfile[] (ranked by citation count)
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# CLASSIFICATION VOCABULARY
# =============================================================================

class VerificationStatus(str, Enum):
    """Discrete outcome of comparing claim and source content."""
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    CONFLICTING = "conflicting"
    PENDING = "pending"


class HallucinationRisk(str, Enum):
    """How likely a claim is unsupported or contradicted by its source."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


# Domain profiles collapse the four record-level risks into three buckets
DomainRisk = Literal["low", "medium", "high"]


# =============================================================================
# VERIFICATION SCHEMAS
# =============================================================================
#
# WHEN USED:
# - VerificationRecord: returned by the orchestrator, the store and the API
# - BatchFailure / VerifyBatchResponse: outcome of POST /api/verify/batch
#

class VerificationRecord(BaseModel):
    """
    The unit of persisted truth: one verification of a claim against a source.

    USED BY: VerificationOrchestrator (creates), VerificationStore (persists),
             DomainTrustAggregator (reads)

    CONSISTENCY:
    verification_status and hallucination_risk always come from the same
    computation. Either both were refined by the similarity scorer, or both
    are the fetch step's coarse classification.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Opaque unique identifier (UUID4)")
    source_url: str
    claim_text: str
    source_domain: Optional[str] = Field(
        default=None,
        description="Normalized hostname of source_url; None if unparseable"
    )
    source_content: Optional[str] = Field(
        default=None,
        description="Extracted source text; None when the fetch failed"
    )
    fetch_error: Optional[str] = None
    similarity_score: Optional[float] = Field(
        default=None,
        ge=0, le=1,
        description="Claim/source cosine similarity; None without embeddings"
    )
    verification_status: VerificationStatus = VerificationStatus.PENDING
    hallucination_risk: Optional[HallucinationRisk] = None
    verified_at: datetime


class BatchFailure(BaseModel):
    """A batch item that could not produce a record."""
    index: int = Field(description="Position of the item in the request")
    url: str
    error: str


class VerifyBatchResponse(BaseModel):
    """
    Response body for POST /api/verify/batch.

    results holds every item that produced a record (including degraded
    ones), in input order. completed_count <= requested_count always.
    """
    results: list[VerificationRecord]
    completed_count: int
    requested_count: int
    failures: list[BatchFailure] = Field(default_factory=list)
    cancelled: bool = False


# =============================================================================
# TRUST PROFILE SCHEMAS
# =============================================================================

class DomainTrustProfile(BaseModel):
    """
    Aggregated reputation signal for all citations from one domain.

    Derived on every read from the store + registry; never persisted.
    """
    domain: str
    citation_count: int = Field(ge=0)
    verified: bool
    trust_score: int = Field(ge=0, le=100)
    hallucination_risk: DomainRisk


class TrustSummary(BaseModel):
    """Headline numbers across all profiles (sources page header)."""
    total_sources: int
    verified_count: int
    avg_trust_score: int
    high_risk_count: int


class KnownSourceEntry(BaseModel):
    """
    A manually curated registry entry.

    USED BY: GET/PUT /api/sources, SourceRegistry, DomainTrustAggregator
    """
    model_config = ConfigDict(from_attributes=True)

    domain: str = Field(min_length=1, max_length=255)
    source_type: str = "Reference"
    avg_citations: float = Field(default=0.0, ge=0)
    verified: bool = False
    trust_score: Optional[float] = Field(default=None, ge=0, le=100)
    hallucination_risk: Optional[str] = Field(default=None, max_length=20)


# =============================================================================
# API REQUEST SCHEMAS
# =============================================================================

class VerifyRequest(BaseModel):
    """
    Request body for POST /api/verify.

    Example:
        {"source_url": "https://example.com/study", "claim_text": "The sky is blue"}
    """
    source_url: str = Field(min_length=1, max_length=2048)
    claim_text: str = Field(min_length=1)


class BatchItem(BaseModel):
    """One (url, claim) pair in a batch request."""
    url: str = Field(min_length=1, max_length=2048)
    claim: str = Field(min_length=1)


class VerifyBatchRequest(BaseModel):
    """Request body for POST /api/verify/batch and /api/verify/batch/stream."""
    items: list[BatchItem] = Field(min_length=1, max_length=500)
