# Database models and API schemas
from citetrust.models.verification import CitationVerification
from citetrust.models.known_source import KnownSource
from citetrust.models.schemas import (
    VerificationStatus,
    HallucinationRisk,
    VerificationRecord,
    DomainTrustProfile,
    KnownSourceEntry,
    TrustSummary,
)

__all__ = [
    "CitationVerification",
    "KnownSource",
    "VerificationStatus",
    "HallucinationRisk",
    "VerificationRecord",
    "DomainTrustProfile",
    "KnownSourceEntry",
    "TrustSummary",
]
