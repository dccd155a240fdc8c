"""
SQLAlchemy model for the citation_verifications table.

One row per verification request. Rows are written once, in a single
transaction, and are only ever removed by an explicit delete.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, Float, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from citetrust.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CitationVerification(Base):
    """
    A persisted verification of a (source URL, claim) pair.

    similarity_score and hallucination_risk are nullable: a fetch failure or
    an unavailable embedding model leaves them empty instead of guessing.
    """

    __tablename__ = "citation_verifications"

    # UUID4 string, assigned by the orchestrator before the write
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Inputs
    source_url: Mapped[str] = mapped_column(Text)
    claim_text: Mapped[str] = mapped_column(Text)

    # Normalized hostname of source_url ("www." stripped, lowercased)
    # NULL when the URL has no parseable host
    source_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Fetch outcome
    source_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fetch_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scoring outcome
    similarity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    verification_status: Mapped[str] = mapped_column(String(20), default="pending")
    hallucination_risk: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Timestamps
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<CitationVerification id={self.id} status={self.verification_status} url={self.source_url[:50]}>"
