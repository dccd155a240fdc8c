"""
Known-sources registry.

The curated list of citation sources maintained by operators. Entries are
keyed by normalized domain, so "https://www.Example.com" and "example.com"
address the same entry.
"""

import logging
from functools import lru_cache
from typing import Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from citetrust.config import get_settings
from citetrust.database import get_session_factory
from citetrust.models.known_source import KnownSource
from citetrust.models.schemas import KnownSourceEntry
from citetrust.services.errors import InvalidInputError, PersistenceError
from citetrust.services.trust.domain_aggregator import normalize_domain

logger = logging.getLogger(__name__)


def _normalized(entry: KnownSourceEntry) -> KnownSourceEntry:
    domain = normalize_domain(entry.domain)
    if domain is None:
        raise InvalidInputError(f"Invalid domain: {entry.domain!r}")
    return entry.model_copy(update={"domain": domain})


class SQLSourceRegistry:
    """Registry backed by the known_sources table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_known_sources(self) -> list[KnownSourceEntry]:
        """All entries, most-cited first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(KnownSource).order_by(KnownSource.avg_citations.desc(), KnownSource.id)
            )
            return [KnownSourceEntry.model_validate(row) for row in result.scalars().all()]

    async def upsert(self, entry: KnownSourceEntry) -> KnownSourceEntry:
        """Create or replace the entry for entry.domain."""
        entry = _normalized(entry)
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    select(KnownSource).where(KnownSource.domain == entry.domain)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = KnownSource(domain=entry.domain)
                    session.add(row)
                row.source_type = entry.source_type
                row.avg_citations = entry.avg_citations
                row.verified = entry.verified
                row.trust_score = entry.trust_score
                row.hallucination_risk = entry.hallucination_risk
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Could not store source {entry.domain}") from e
        logger.info(f"Registry entry saved: {entry.domain}")
        return entry

    async def delete(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        if normalized is None:
            return False
        async with self.session_factory() as session:
            try:
                result = await session.execute(
                    delete(KnownSource).where(KnownSource.domain == normalized)
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Could not delete source {normalized}") from e
        return result.rowcount > 0


class InMemorySourceRegistry:
    """Process-local registry."""

    def __init__(self, entries: Optional[list[KnownSourceEntry]] = None):
        self._entries: dict[str, KnownSourceEntry] = {}
        for entry in entries or []:
            entry = _normalized(entry)
            self._entries[entry.domain] = entry

    async def list_known_sources(self) -> list[KnownSourceEntry]:
        return sorted(self._entries.values(), key=lambda e: e.avg_citations, reverse=True)

    async def upsert(self, entry: KnownSourceEntry) -> KnownSourceEntry:
        entry = _normalized(entry)
        self._entries[entry.domain] = entry
        return entry

    async def delete(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        return self._entries.pop(normalized, None) is not None if normalized else False


SourceRegistry = Union[SQLSourceRegistry, InMemorySourceRegistry]


@lru_cache
def get_source_registry() -> SourceRegistry:
    if get_settings().database_url:
        return SQLSourceRegistry(get_session_factory())
    return InMemorySourceRegistry()
