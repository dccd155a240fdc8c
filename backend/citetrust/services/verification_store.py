"""
Verification Store: durable record set of past verifications.

WHAT THIS DOES:
Persists VerificationRecords and reads them back, by id, by domain, or all.

WRITE SEMANTICS:
put() is append/overwrite-by-id and runs in its own transaction: a record is
either fully written or not written. Any database error is raised as
PersistenceError so callers can isolate the failing item.

BACKENDS:
- SQLVerificationStore: PostgreSQL through SQLAlchemy (production)
- InMemoryVerificationStore: process-local dict, used when DATABASE_URL is
  empty (local runs, tests)

USAGE:
    store = get_verification_store()
    await store.put(record)
    records = await store.list_by_domain("example.com")
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from citetrust.config import get_settings
from citetrust.database import get_session_factory
from citetrust.models.schemas import VerificationRecord
from citetrust.models.verification import CitationVerification
from citetrust.services.errors import PersistenceError
from citetrust.services.trust.domain_aggregator import normalize_domain

logger = logging.getLogger(__name__)


def _to_row(record: VerificationRecord) -> CitationVerification:
    return CitationVerification(
        id=record.id,
        source_url=record.source_url,
        claim_text=record.claim_text,
        source_domain=record.source_domain,
        source_content=record.source_content,
        fetch_error=record.fetch_error,
        similarity_score=record.similarity_score,
        verification_status=record.verification_status.value,
        hallucination_risk=record.hallucination_risk.value if record.hallucination_risk else None,
        verified_at=record.verified_at or datetime.now(timezone.utc),
    )


class SQLVerificationStore:
    """Verification store backed by the citation_verifications table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def put(self, record: VerificationRecord) -> VerificationRecord:
        """
        Write a record in a single transaction.

        Raises:
            PersistenceError: if the write failed (nothing was written)
        """
        async with self.session_factory() as session:
            try:
                await session.merge(_to_row(record))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Failed to persist verification {record.id}: {e}")
                raise PersistenceError(f"Could not store verification {record.id}") from e
        return record

    async def get(self, record_id: str) -> Optional[VerificationRecord]:
        async with self.session_factory() as session:
            row = await session.get(CitationVerification, record_id)
            return VerificationRecord.model_validate(row) if row else None

    async def list_all(self) -> list[VerificationRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CitationVerification).order_by(CitationVerification.created_at)
            )
            return [VerificationRecord.model_validate(row) for row in result.scalars().all()]

    async def list_by_domain(self, domain: str) -> list[VerificationRecord]:
        normalized = normalize_domain(domain)
        if normalized is None:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(CitationVerification)
                .where(CitationVerification.source_domain == normalized)
                .order_by(CitationVerification.created_at)
            )
            return [VerificationRecord.model_validate(row) for row in result.scalars().all()]

    async def delete(self, record_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    delete(CitationVerification).where(CitationVerification.id == record_id)
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Could not delete verification {record_id}") from e
        return result.rowcount > 0


class InMemoryVerificationStore:
    """Process-local store; records are lost on restart."""

    def __init__(self):
        self._records: dict[str, VerificationRecord] = {}

    async def put(self, record: VerificationRecord) -> VerificationRecord:
        self._records[record.id] = record.model_copy()
        return record

    async def get(self, record_id: str) -> Optional[VerificationRecord]:
        record = self._records.get(record_id)
        return record.model_copy() if record is not None else None

    async def list_all(self) -> list[VerificationRecord]:
        return [r.model_copy() for r in self._records.values()]

    async def list_by_domain(self, domain: str) -> list[VerificationRecord]:
        normalized = normalize_domain(domain)
        return [
            r.model_copy() for r in self._records.values()
            if normalized and r.source_domain == normalized
        ]

    async def delete(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None


VerificationStore = Union[SQLVerificationStore, InMemoryVerificationStore]


@lru_cache
def get_verification_store() -> VerificationStore:
    """Process-wide store: SQL when DATABASE_URL is set, memory otherwise."""
    if get_settings().database_url:
        return SQLVerificationStore(get_session_factory())
    logger.warning("DATABASE_URL not set, verifications are kept in memory only")
    return InMemoryVerificationStore()
