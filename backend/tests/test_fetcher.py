"""
Tests for the source fetcher.

HTTP is served by httpx.MockTransport, so nothing leaves the process.
"""

import httpx
import pytest

from citetrust.models.schemas import HallucinationRisk, VerificationStatus
from citetrust.services.fetcher import SourceFetcher

ARTICLE_TEXT = (
    "Water boils at one hundred degrees Celsius at sea level. At higher altitudes "
    "the air pressure is lower, so the boiling point drops noticeably."
)

ARTICLE_HTML = f"""
<html>
  <head><title>Boiling</title><style>p {{ color: red; }}</style></head>
  <body>
    <script>var tracking = true;</script>
    <article><p>{ARTICLE_TEXT}</p></article>
  </body>
</html>
"""


def make_fetcher(handler) -> SourceFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SourceFetcher(client=client)


def serve(status_code: int, text: str = "", content_type: str = "text/html"):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text=text, headers={"Content-Type": content_type})
    return handler


# =============================================================================
# SUCCESSFUL FETCHES
# =============================================================================

@pytest.mark.asyncio
async def test_fetch_extracts_article_text():
    fetcher = make_fetcher(serve(200, ARTICLE_HTML))

    result = await fetcher.fetch("https://example.com/boiling")

    assert result.ok
    assert "Water boils at one hundred degrees" in result.content
    assert "tracking" not in result.content
    assert "color: red" not in result.content
    assert result.fallback_status is VerificationStatus.PENDING
    assert result.fallback_risk is None
    await fetcher.close()


@pytest.mark.asyncio
async def test_content_is_capped():
    fetcher = make_fetcher(serve(200, "word " * 5000, content_type="text/plain"))

    result = await fetcher.fetch("https://example.com/long.txt")

    assert result.ok
    assert len(result.content) <= fetcher.max_content_chars


@pytest.mark.asyncio
async def test_short_content_is_kept_with_medium_risk():
    fetcher = make_fetcher(serve(200, "<html><body><p>Too short.</p></body></html>"))

    result = await fetcher.fetch("https://example.com/stub")

    assert result.content is not None
    assert len(result.content) < 100
    assert result.error is None
    assert result.fallback_status is VerificationStatus.PENDING
    assert result.fallback_risk is HallucinationRisk.MEDIUM


@pytest.mark.asyncio
async def test_page_without_text_is_an_error():
    fetcher = make_fetcher(serve(200, "<html><script>var x = 1;</script></html>"))

    result = await fetcher.fetch("https://example.com/empty")

    assert not result.ok
    assert result.error == "No extractable content"
    assert result.fallback_risk is HallucinationRisk.MEDIUM


# =============================================================================
# FAILURES
# =============================================================================

@pytest.mark.asyncio
async def test_404_is_unverified_high_risk():
    fetcher = make_fetcher(serve(404, "Not Found"))

    result = await fetcher.fetch("https://example.com/missing")

    assert not result.ok
    assert result.status_code == 404
    assert result.error == "HTTP 404"
    assert result.fallback_status is VerificationStatus.UNVERIFIED
    assert result.fallback_risk is HallucinationRisk.HIGH


@pytest.mark.asyncio
async def test_server_error_is_pending_medium_risk():
    fetcher = make_fetcher(serve(500, "boom"))

    result = await fetcher.fetch("https://example.com/broken")

    assert not result.ok
    assert result.status_code == 500
    assert result.fallback_status is VerificationStatus.PENDING
    assert result.fallback_risk is HallucinationRisk.MEDIUM


@pytest.mark.asyncio
@pytest.mark.parametrize("exc", [
    httpx.ConnectError("connection refused"),
    httpx.ReadTimeout("timed out"),
])
async def test_network_errors_never_raise(exc):
    def handler(request):
        raise exc

    fetcher = make_fetcher(handler)

    result = await fetcher.fetch("https://unreachable.test/")

    assert not result.ok
    assert result.status_code is None
    assert result.error
    assert result.fallback_status is VerificationStatus.PENDING
    assert result.fallback_risk is HallucinationRisk.MEDIUM


# =============================================================================
# EXTRACTION
# =============================================================================

def test_extract_text_of_blank_document():
    assert SourceFetcher.extract_text("") == ""
    assert SourceFetcher.extract_text("   \n ") == ""


def test_extract_text_collapses_whitespace():
    text = SourceFetcher.extract_text("<div>one</div>\n\n<div>two   three</div>")

    assert "  " not in text
    assert "\n" not in text
