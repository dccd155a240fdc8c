"""
SQLAlchemy model for the known_sources table.

The manually curated registry of citation sources. Operators maintain it
through the /api/sources endpoints; the trust aggregator merges it with the
verification history.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Float, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from citetrust.database import Base


class KnownSource(Base):
    """A registry entry for one normalized domain."""

    __tablename__ = "known_sources"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Normalized hostname, e.g. "example.com"
    domain: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    source_type: Mapped[str] = mapped_column(String(50), default="Reference")

    # Average number of citations observed for this source elsewhere
    avg_citations: Mapped[float] = mapped_column(Float, default=0.0)

    verified: Mapped[bool] = mapped_column(Boolean, default=False)

    # 0-100, NULL means "use the configured baseline"
    trust_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hallucination_risk: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<KnownSource domain={self.domain} verified={self.verified}>"
