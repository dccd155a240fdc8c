"""
Source Content Fetcher.

WHAT THIS DOES:
Downloads a cited URL and extracts its readable text, so the claim can be
compared against what the source actually says.

NEVER RAISES:
Every outcome is a FetchResult. When the page cannot be used, the result
carries the error plus a coarse best-effort classification that the
orchestrator stores as-is if no similarity can be computed:

    HTTP 404                      → unverified, risk high
    any other HTTP/network error  → pending,    risk medium
    page with no extractable text → pending,    risk medium
    text shorter than 100 chars   → pending,    risk medium  (content kept)
    usable text                   → pending,    risk absent  (awaits scoring)

EXTRACTION:
trafilatura pulls the main article text out of HTML. Pages it cannot parse
(plain text, odd markup) fall back to stripping tags. Content is capped at
fetch_max_content_chars.

USAGE:
    fetcher = SourceFetcher()
    result = await fetcher.fetch("https://example.com/article")
    if result.ok:
        print(result.content[:200])
    await fetcher.close()
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx
import trafilatura

from citetrust.config import get_settings
from citetrust.models.schemas import HallucinationRisk, VerificationStatus
from citetrust.services.errors import FetchFailure

logger = logging.getLogger(__name__)

_SCRIPT_RE = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


@dataclass
class FetchResult:
    """Outcome of fetching one source URL."""

    url: str
    content: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    fallback_status: VerificationStatus = VerificationStatus.PENDING
    fallback_risk: Optional[HallucinationRisk] = None

    @property
    def ok(self) -> bool:
        """True if there is text to embed."""
        return self.error is None and bool(self.content)


class SourceFetcher:
    """
    Async HTTP fetcher with text extraction.

    The httpx client is created lazily and reused across fetches; call
    close() on shutdown.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        settings = get_settings()
        self.timeout = settings.fetch_timeout
        self.max_content_chars = settings.fetch_max_content_chars
        self.min_content_length = settings.min_content_length
        self.user_agent = settings.fetch_user_agent
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # FETCH
    # =========================================================================

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a URL and classify the outcome.

        Args:
            url: Absolute http(s) URL of the cited source

        Returns:
            FetchResult; content is set on success, error otherwise
        """
        try:
            html = await self._download(url)
        except FetchFailure as e:
            return self._failed(url, str(e), e.status_code)
        except httpx.HTTPError as e:
            return self._failed(url, str(e) or type(e).__name__, None)

        content = await asyncio.to_thread(self.extract_text, html)
        content = content[:self.max_content_chars]

        if not content:
            logger.warning(f"No extractable text at {url}")
            return FetchResult(
                url=url,
                error="No extractable content",
                fallback_status=VerificationStatus.PENDING,
                fallback_risk=HallucinationRisk.MEDIUM,
            )

        if len(content) < self.min_content_length:
            logger.info(f"Insufficient content at {url} ({len(content)} chars)")
            return FetchResult(
                url=url,
                content=content,
                fallback_status=VerificationStatus.PENDING,
                fallback_risk=HallucinationRisk.MEDIUM,
            )

        logger.info(f"Fetched {len(content)} chars from {url}")
        return FetchResult(url=url, content=content)

    async def _download(self, url: str) -> str:
        client = await self._get_client()
        response = await client.get(url)
        if response.status_code >= 400:
            raise FetchFailure(f"HTTP {response.status_code}", status_code=response.status_code)
        return response.text

    def _failed(self, url: str, error: str, status_code: Optional[int]) -> FetchResult:
        logger.warning(f"Fetch failed for {url}: {error}")
        if status_code == 404:
            status, risk = VerificationStatus.UNVERIFIED, HallucinationRisk.HIGH
        else:
            status, risk = VerificationStatus.PENDING, HallucinationRisk.MEDIUM
        return FetchResult(
            url=url,
            error=error,
            status_code=status_code,
            fallback_status=status,
            fallback_risk=risk,
        )

    # =========================================================================
    # EXTRACTION
    # =========================================================================

    @staticmethod
    def extract_text(html: str) -> str:
        """
        Extract readable text from an HTML (or plain text) document.

        Uses trafilatura for main-content extraction; falls back to removing
        scripts, styles and tags when trafilatura finds nothing.
        """
        if not html or not html.strip():
            return ""

        text = trafilatura.extract(html)
        if not text:
            text = _STYLE_RE.sub("", _SCRIPT_RE.sub("", html))
            text = _TAG_RE.sub(" ", text)

        return _WS_RE.sub(" ", text).strip()
