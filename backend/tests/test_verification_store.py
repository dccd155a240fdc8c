"""
Tests for the verification store and the known-sources registry.

The SQL backends run against a throwaway SQLite file (aiosqlite), created
with the same create_tables() the service uses at startup.
"""

import uuid
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from citetrust.database import create_tables
from citetrust.models.schemas import (
    HallucinationRisk,
    KnownSourceEntry,
    VerificationRecord,
    VerificationStatus,
)
from citetrust.services.errors import InvalidInputError, PersistenceError
from citetrust.services.source_registry import InMemorySourceRegistry, SQLSourceRegistry
from citetrust.services.verification_store import (
    InMemoryVerificationStore,
    SQLVerificationStore,
)


def make_record(url="https://www.example.com/a", **overrides) -> VerificationRecord:
    fields = dict(
        id=str(uuid.uuid4()),
        source_url=url,
        claim_text="Water boils at 100 degrees",
        source_domain="example.com",
        source_content="Water boils at one hundred degrees at sea level",
        similarity_score=0.82,
        verification_status=VerificationStatus.VERIFIED,
        hallucination_risk=HallucinationRisk.LOW,
        verified_at=datetime.now(timezone.utc),
    )
    fields.update(overrides)
    return VerificationRecord(**fields)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'citetrust.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture(params=["sql", "memory"])
def any_store(request, session_factory):
    if request.param == "sql":
        return SQLVerificationStore(session_factory)
    return InMemoryVerificationStore()


@pytest.fixture(params=["sql", "memory"])
def any_registry(request, session_factory):
    if request.param == "sql":
        return SQLSourceRegistry(session_factory)
    return InMemorySourceRegistry()


# =============================================================================
# VERIFICATION STORE
# =============================================================================

@pytest.mark.asyncio
async def test_put_then_get(any_store):
    record = make_record()

    await any_store.put(record)
    loaded = await any_store.get(record.id)

    assert loaded is not None
    assert loaded.source_url == record.source_url
    assert loaded.similarity_score == pytest.approx(0.82)
    assert loaded.verification_status is VerificationStatus.VERIFIED
    assert loaded.hallucination_risk is HallucinationRisk.LOW


@pytest.mark.asyncio
async def test_degraded_record_roundtrips_nulls(any_store):
    record = make_record(
        source_content=None,
        fetch_error="HTTP 404",
        similarity_score=None,
        verification_status=VerificationStatus.UNVERIFIED,
        hallucination_risk=HallucinationRisk.HIGH,
    )

    await any_store.put(record)
    loaded = await any_store.get(record.id)

    assert loaded.similarity_score is None
    assert loaded.source_content is None
    assert loaded.fetch_error == "HTTP 404"


@pytest.mark.asyncio
async def test_get_unknown_id(any_store):
    assert await any_store.get("does-not-exist") is None


@pytest.mark.asyncio
async def test_put_overwrites_by_id(any_store):
    record = make_record()
    await any_store.put(record)

    await any_store.put(record.model_copy(update={"similarity_score": 0.1}))

    assert len(await any_store.list_all()) == 1
    assert (await any_store.get(record.id)).similarity_score == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_list_by_domain_normalizes_query(any_store):
    await any_store.put(make_record("https://www.example.com/a"))
    await any_store.put(make_record("https://example.com/b"))
    await any_store.put(make_record("https://other.test/c", source_domain="other.test"))

    for query in ["example.com", "www.example.com", "https://EXAMPLE.com/x"]:
        records = await any_store.list_by_domain(query)
        assert {r.source_url for r in records} == {
            "https://www.example.com/a",
            "https://example.com/b",
        }, f"Query {query!r}"


@pytest.mark.asyncio
async def test_delete(any_store):
    record = make_record()
    await any_store.put(record)

    assert await any_store.delete(record.id) is True
    assert await any_store.get(record.id) is None
    assert await any_store.delete(record.id) is False


@pytest.mark.asyncio
async def test_sql_write_failure_raises_persistence_error(db_engine, session_factory):
    store = SQLVerificationStore(session_factory)
    async with db_engine.begin() as conn:
        await conn.execute(text("DROP TABLE citation_verifications"))

    with pytest.raises(PersistenceError):
        await store.put(make_record())


# =============================================================================
# KNOWN-SOURCES REGISTRY
# =============================================================================

@pytest.mark.asyncio
async def test_registry_upsert_normalizes_domain(any_registry):
    saved = await any_registry.upsert(KnownSourceEntry(domain="https://www.Nature.com/", avg_citations=8))

    assert saved.domain == "nature.com"
    assert [e.domain for e in await any_registry.list_known_sources()] == ["nature.com"]


@pytest.mark.asyncio
async def test_registry_upsert_replaces_existing_entry(any_registry):
    await any_registry.upsert(KnownSourceEntry(domain="nature.com", avg_citations=8))
    await any_registry.upsert(KnownSourceEntry(
        domain="www.nature.com",
        avg_citations=12,
        verified=True,
        trust_score=92,
        hallucination_risk="low",
    ))

    entries = await any_registry.list_known_sources()

    assert len(entries) == 1
    assert entries[0].avg_citations == 12
    assert entries[0].verified
    assert entries[0].trust_score == 92
    assert entries[0].hallucination_risk == "low"


@pytest.mark.asyncio
async def test_registry_lists_most_cited_first(any_registry):
    await any_registry.upsert(KnownSourceEntry(domain="few.test", avg_citations=1))
    await any_registry.upsert(KnownSourceEntry(domain="many.test", avg_citations=40))
    await any_registry.upsert(KnownSourceEntry(domain="some.test", avg_citations=7))

    entries = await any_registry.list_known_sources()

    assert [e.domain for e in entries] == ["many.test", "some.test", "few.test"]


@pytest.mark.asyncio
async def test_registry_rejects_invalid_domain(any_registry):
    with pytest.raises(InvalidInputError):
        await any_registry.upsert(KnownSourceEntry(domain="not a domain"))


@pytest.mark.asyncio
async def test_registry_delete(any_registry):
    await any_registry.upsert(KnownSourceEntry(domain="nature.com"))

    assert await any_registry.delete("www.nature.com") is True
    assert await any_registry.list_known_sources() == []
    assert await any_registry.delete("nature.com") is False


@pytest.mark.asyncio
async def test_in_memory_reads_return_copies():
    store = InMemoryVerificationStore()
    record = make_record()
    await store.put(record)

    (await store.get(record.id)).similarity_score = 0.0
    (await store.list_all())[0].fetch_error = "changed"
    (await store.list_by_domain("example.com"))[0].claim_text = "changed"

    stored = await store.get(record.id)
    assert stored.similarity_score == pytest.approx(0.82)
    assert stored.fetch_error is None
    assert stored.claim_text == "Water boils at 100 degrees"
