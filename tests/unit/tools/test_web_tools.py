"""Tests for web search and scraping tools."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from core.run_context import RunContext
from tools import web_tools
from tools.web_tools import clamp_result_count, extract_code_blocks, extract_links, web_scrape, web_search

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def http_handler(monkeypatch: pytest.MonkeyPatch) -> Callable[[Handler], list[httpx.Request]]:
    """Route the tools' httpx clients through a MockTransport; returns the recorded requests."""
    real_client = httpx.AsyncClient

    def install(handler: Handler) -> list[httpx.Request]:
        seen: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        def factory(*args: Any, **kwargs: Any) -> httpx.AsyncClient:
            return real_client(*args, transport=httpx.MockTransport(record), **kwargs)

        monkeypatch.setattr(web_tools.httpx, "AsyncClient", factory)
        return seen

    return install


@pytest.mark.parametrize(("requested", "expected"), [(None, 5), (3, 3), ("7", 7), (0, 5), (-4, 1), (50, 10), ("x", 5)])
def test_clamp_result_count(requested: Any, expected: int) -> None:
    assert clamp_result_count(requested) == expected


class TestWebSearch:
    """Tests for web_search."""

    @pytest.mark.asyncio
    async def test_results(self, http_handler: Any, run_context: RunContext) -> None:
        requests = http_handler(
            lambda request: httpx.Response(
                200,
                json={
                    "items": [
                        {"title": "Python", "link": "https://python.org", "snippet": "Home", "displayLink": "python.org"}
                    ]
                },
            )
        )

        result = await web_search({"query": "python", "num": 3}, run_context)

        assert result == {
            "success": True,
            "query": "python",
            "resultsCount": 1,
            "results": [{"title": "Python", "link": "https://python.org", "snippet": "Home", "source": "python.org"}],
        }
        params = requests[0].url.params
        assert params["q"] == "python"
        assert params["num"] == "3"
        assert params["key"] == "test-google-key"
        assert params["cx"] == "test-engine-id"

    @pytest.mark.asyncio
    async def test_query_alias(self, http_handler: Any, run_context: RunContext) -> None:
        requests = http_handler(lambda request: httpx.Response(200, json={}))

        result = await web_search({"searchQuery": "rust"}, run_context)

        assert result["resultsCount"] == 0
        assert requests[0].url.params["num"] == "5"

    @pytest.mark.asyncio
    async def test_missing_query(self, run_context: RunContext) -> None:
        assert await web_search({}, run_context) == {"success": False, "error": "Search query is required"}

    @pytest.mark.asyncio
    async def test_not_configured(
        self, monkeypatch: pytest.MonkeyPatch, test_settings: Any, run_context: RunContext
    ) -> None:
        unconfigured = test_settings.model_copy(update={"google_search_api_key": None})
        monkeypatch.setattr(web_tools, "get_settings", lambda: unconfigured)

        result = await web_search({"query": "python"}, run_context)

        assert result["success"] is False
        assert "GOOGLE_SEARCH_API_KEY" in result["error"]

    @pytest.mark.asyncio
    async def test_api_error(self, http_handler: Any, run_context: RunContext) -> None:
        http_handler(lambda request: httpx.Response(403, json={"error": {"message": "Daily limit exceeded"}}))

        result = await web_search({"query": "python"}, run_context)

        assert result == {"success": False, "error": "Google Search API error: Daily limit exceeded"}


PAGE_MARKDOWN = """# Guide

See [Docs](/docs) and [the docs again](/docs) or [mail us](mailto:team@example.com).

```python
print("hi")
```
"""


class TestWebScrape:
    """Tests for web_scrape."""

    @pytest.mark.asyncio
    async def test_plain_text_page(self, http_handler: Any, run_context: RunContext) -> None:
        http_handler(
            lambda request: httpx.Response(200, text=PAGE_MARKDOWN, headers={"content-type": "text/markdown; charset=utf-8"})
        )

        result = await web_scrape({"url": "https://example.com/guide"}, run_context)

        assert result["success"] is True
        assert result["url"] == "https://example.com/guide"
        assert result["textContent"].startswith("# Guide")
        assert result["links"] == [{"text": "Docs", "url": "https://example.com/docs"}]
        assert result["codeContent"] == 'print("hi")'

    @pytest.mark.asyncio
    async def test_html_is_converted(
        self, monkeypatch: pytest.MonkeyPatch, http_handler: Any, run_context: RunContext
    ) -> None:
        html = b"<html><body><h1>Hi</h1></body></html>"
        http_handler(lambda request: httpx.Response(200, content=html, headers={"content-type": "text/html"}))
        convert = AsyncMock(return_value="# Hi\n")
        monkeypatch.setattr(web_tools, "convert_bytes_to_markdown", convert)

        result = await web_scrape({"url": "https://example.com"}, run_context)

        assert result["textContent"] == "# Hi\n"
        convert.assert_awaited_once_with(html, ".html")

    @pytest.mark.asyncio
    async def test_http_error(self, http_handler: Any, run_context: RunContext) -> None:
        http_handler(lambda request: httpx.Response(404, text="missing"))

        result = await web_scrape({"url": "https://example.com/gone"}, run_context)

        assert result["success"] is False
        assert result["textContent"] is None
        assert result["links"] == []
        assert result["codeContent"] == ""
        assert result["error"].startswith("Web scraping failed for https://example.com/gone.")

    @pytest.mark.asyncio
    async def test_empty_page(self, http_handler: Any, run_context: RunContext) -> None:
        http_handler(lambda request: httpx.Response(200, text="  \n", headers={"content-type": "text/plain"}))

        result = await web_scrape({"url": "https://example.com/blank"}, run_context)

        assert result["error"].endswith("no readable content found")

    @pytest.mark.asyncio
    async def test_missing_url(self, run_context: RunContext) -> None:
        assert (await web_scrape({}, run_context))["error"] == "URL is required for web scraping."


def test_extract_helpers() -> None:
    links = extract_links("[a](https://x.org/a) [b](../b) [c](#top)", "https://x.org/docs/page")
    assert [link["url"] for link in links] == ["https://x.org/a", "https://x.org/b", "https://x.org/docs/page#top"]
    assert extract_code_blocks("no code here") == ""
