"""
Domain Trust Aggregator.

WHAT THIS DOES:
Reduces two differently-shaped inputs into one ranked list of per-domain
trust profiles:
1. The known-sources registry (curated, one entry per domain)
2. The verification history (one record per verified claim)

HOW IT WORKS:
Both inputs are first mapped into the same Contribution shape

    Contribution(domain, weight, score, risk, verified)

and a single source-agnostic reduction folds contributions into profiles.
Registry entries are mapped first, so for equal citation counts registry
domains rank ahead of domains seen only in the history.

REDUCTION RULES:
- citation_count = sum of weights (registry entry: avg_citations or 1)
- verified       = any contribution verified
- trust_score    = round(mean(scores)), 50 when no scores exist. 0 would
                   read as "untrustworthy" when there simply is no evidence.
- risk vote      = count(high, very_high) vs count(low)
                   more high → "high", more low → "low", otherwise "medium"
                   (ties, including no votes at all, land on "medium")
- ranking        = stable sort by citation_count, descending

EXAMPLE:
    Records for example.com with risks [high, high, low]  → "high"
    Records with risks [high, low]                         → "medium"
    Only a registry entry with risk "unknown"              → "medium"

USAGE:
    aggregator = DomainTrustAggregator(store, registry)
    profiles = await aggregator.aggregate()
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional
from urllib.parse import urlsplit

from citetrust.config import get_settings
from citetrust.models.schemas import (
    DomainRisk,
    DomainTrustProfile,
    KnownSourceEntry,
    TrustSummary,
    VerificationRecord,
    VerificationStatus,
)

if TYPE_CHECKING:
    # Both modules import this one for domain normalization
    from citetrust.services.source_registry import SourceRegistry
    from citetrust.services.verification_store import VerificationStore

logger = logging.getLogger(__name__)

DEFAULT_TRUST_SCORE = 50
UNKNOWN_RISK = "unknown"

_HIGH_RISKS = frozenset({"high", "very_high"})
_LOW_RISKS = frozenset({"low"})


# =============================================================================
# DOMAIN NORMALIZATION
# =============================================================================

def _clean_host(host: Optional[str]) -> Optional[str]:
    if not host:
        return None
    host = host.strip().lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    if not host or any(ch.isspace() for ch in host):
        return None
    return host


def domain_from_url(url: str) -> Optional[str]:
    """
    Normalized hostname of an absolute URL, or None if it has none.

    Example:
        domain_from_url("https://www.Example.com/page")  → "example.com"
        domain_from_url("not a url")                     → None
    """
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        return None
    if not parts.scheme:
        return None
    return _clean_host(host)


def normalize_domain(value: str) -> Optional[str]:
    """Normalize a bare domain ("WWW.Example.com") or a URL to its hostname."""
    if "://" not in value:
        value = f"http://{value.strip()}"
    return domain_from_url(value)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (2.5 → 3)."""
    return int(math.floor(value + 0.5))


# =============================================================================
# CONTRIBUTIONS
# =============================================================================

@dataclass(frozen=True)
class Contribution:
    """One observation about a domain, independent of where it came from."""
    domain: str
    weight: int
    score: Optional[float]
    risk: Optional[str]
    verified: bool


def contributions_from_registry(
    sources: Iterable[KnownSourceEntry],
    baseline_score: float = DEFAULT_TRUST_SCORE,
) -> list[Contribution]:
    """Map registry entries to contributions (weight >= 1, always scored)."""
    contributions = []
    for source in sources:
        domain = normalize_domain(source.domain)
        if domain is None:
            logger.warning(f"Skipping registry entry with invalid domain: {source.domain!r}")
            continue
        contributions.append(Contribution(
            domain=domain,
            weight=max(1, round_half_up(source.avg_citations or 0)),
            score=source.trust_score if source.trust_score is not None else baseline_score,
            risk=source.hallucination_risk or UNKNOWN_RISK,
            verified=bool(source.verified),
        ))
    return contributions


def contributions_from_records(records: Iterable[VerificationRecord]) -> list[Contribution]:
    """Map verification records to contributions; unparseable URLs are skipped."""
    contributions = []
    for record in records:
        domain = domain_from_url(record.source_url)
        if domain is None:
            continue
        score = record.similarity_score * 100 if record.similarity_score is not None else None
        risk = record.hallucination_risk.value if record.hallucination_risk is not None else None
        contributions.append(Contribution(
            domain=domain,
            weight=1,
            score=score,
            risk=risk,
            verified=record.verification_status is VerificationStatus.VERIFIED,
        ))
    return contributions


# =============================================================================
# REDUCTION
# =============================================================================

@dataclass
class _DomainAccumulator:
    citation_count: int = 0
    verified: bool = False
    scores: list[float] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)


def majority_risk(risks: Iterable[str]) -> DomainRisk:
    """Vote high (high + very_high) against low; ties resolve to medium."""
    high_count = 0
    low_count = 0
    for risk in risks:
        if risk in _HIGH_RISKS:
            high_count += 1
        elif risk in _LOW_RISKS:
            low_count += 1

    if high_count > low_count:
        return "high"
    if low_count > high_count:
        return "low"
    return "medium"


def mean_trust_score(scores: list[float], default: int = DEFAULT_TRUST_SCORE) -> int:
    """Rounded mean clamped to 0-100, or the default when there are no scores."""
    if not scores:
        return default
    # fsum keeps the mean independent of contribution order
    mean = math.fsum(scores) / len(scores)
    return min(100, max(0, round_half_up(mean)))


def reduce_contributions(
    contributions: Iterable[Contribution],
    default_trust_score: int = DEFAULT_TRUST_SCORE,
) -> list[DomainTrustProfile]:
    """Fold contributions into profiles ranked by citation count."""
    accumulators: dict[str, _DomainAccumulator] = {}

    for contribution in contributions:
        acc = accumulators.setdefault(contribution.domain, _DomainAccumulator())
        acc.citation_count += contribution.weight
        acc.verified = acc.verified or contribution.verified
        if contribution.score is not None:
            acc.scores.append(contribution.score)
        if contribution.risk is not None:
            acc.risks.append(contribution.risk)

    profiles = [
        DomainTrustProfile(
            domain=domain,
            citation_count=acc.citation_count,
            verified=acc.verified,
            trust_score=mean_trust_score(acc.scores, default_trust_score),
            hallucination_risk=majority_risk(acc.risks),
        )
        for domain, acc in accumulators.items()
    ]

    # list.sort is stable, also with reverse=True
    profiles.sort(key=lambda p: p.citation_count, reverse=True)
    return profiles


def summarize(profiles: list[DomainTrustProfile]) -> TrustSummary:
    """Headline counts across profiles."""
    avg = (
        round_half_up(sum(p.trust_score for p in profiles) / len(profiles))
        if profiles else 0
    )
    return TrustSummary(
        total_sources=len(profiles),
        verified_count=sum(1 for p in profiles if p.verified),
        avg_trust_score=avg,
        high_risk_count=sum(1 for p in profiles if p.hallucination_risk == "high"),
    )


def filter_profiles(
    profiles: list[DomainTrustProfile],
    *,
    min_trust_score: Optional[int] = None,
    risk: Optional[DomainRisk] = None,
    verified_only: bool = False,
    limit: Optional[int] = None,
) -> list[DomainTrustProfile]:
    """Filter an already-ranked list; ranking order is preserved."""
    selected = [
        p for p in profiles
        if (min_trust_score is None or p.trust_score >= min_trust_score)
        and (risk is None or p.hallucination_risk == risk)
        and (not verified_only or p.verified)
    ]
    return selected[:limit] if limit is not None else selected


# =============================================================================
# AGGREGATOR
# =============================================================================

class DomainTrustAggregator:
    """
    Read-only view over the store and the registry.

    Each aggregate() call reads a fresh snapshot; writes that land during
    aggregation may or may not be reflected.
    """

    def __init__(
        self,
        store: "VerificationStore",
        registry: "SourceRegistry",
        default_trust_score: Optional[int] = None,
    ):
        self.store = store
        self.registry = registry
        if default_trust_score is None:
            default_trust_score = get_settings().default_trust_score
        self.default_trust_score = default_trust_score

    async def aggregate(self) -> list[DomainTrustProfile]:
        sources = await self.registry.list_known_sources()
        records = await self.store.list_all()

        contributions = contributions_from_registry(sources, self.default_trust_score)
        contributions.extend(contributions_from_records(records))

        profiles = reduce_contributions(contributions, self.default_trust_score)
        logger.info(
            f"Aggregated {len(profiles)} domain profiles from "
            f"{len(sources)} registry entries and {len(records)} records"
        )
        return profiles
