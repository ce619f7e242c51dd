"""
Web tools: Google Custom Search and page scraping.
"""

from __future__ import annotations

import re

from typing import Any
from urllib.parse import urljoin, urlparse

import httpx

from core.constants import get_settings
from core.run_context import RunContext
from tools.registry import ToolDefinition
from utils.document_processor import convert_bytes_to_markdown
from utils.json_utils import remove_control_characters
from utils.logger import logger

GOOGLE_SEARCH_ENDPOINT = "https://www.googleapis.com/customsearch/v1"
DEFAULT_SEARCH_RESULTS = 5
MAX_SEARCH_RESULTS = 10
SCRAPE_TIMEOUT_SECONDS = 30.0
SCRAPE_USER_AGENT = "Mozilla/5.0 (compatible; agnt-core/1.0; +https://agnt.gg)"

_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
_FENCED_CODE_RE = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)


def clamp_result_count(num: Any) -> int:
    """Clamp a requested result count to 1..10 (invalid values fall back to 5)."""
    try:
        value = int(num) if num is not None else DEFAULT_SEARCH_RESULTS
    except (TypeError, ValueError):
        value = DEFAULT_SEARCH_RESULTS
    if value == 0:
        value = DEFAULT_SEARCH_RESULTS
    return min(max(1, value), MAX_SEARCH_RESULTS)


async def web_search(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
    """Search the web with Google Custom Search.

    Args:
        args: ``{"query": str, "num"?: number}`` (``searchQuery``/``numResults`` are accepted aliases)
        run_context: Current run

    Returns:
        Result dict with ``results`` of ``{title, link, snippet, source}``
    """
    query = args.get("query") or args.get("searchQuery")
    if not query:
        return {"success": False, "error": "Search query is required"}

    settings = get_settings()
    if not settings.google_search_api_key or not settings.google_search_engine_id:
        return {
            "success": False,
            "error": "Google Search API key or Custom Search Engine ID is not configured. "
            "Set GOOGLE_SEARCH_API_KEY and GOOGLE_SEARCH_ENGINE_ID.",
        }

    num = clamp_result_count(args.get("num", args.get("numResults")))
    params = {
        "key": settings.google_search_api_key,
        "cx": settings.google_search_engine_id,
        "q": query,
        "num": num,
    }

    logger.info(f"Web search: {num} result(s) requested")
    try:
        async with httpx.AsyncClient(timeout=SCRAPE_TIMEOUT_SECONDS) as client:
            response = await client.get(GOOGLE_SEARCH_ENDPOINT, params=params)
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Google Custom Search request failed: {e}")
        return {"success": False, "error": f"Web search failed: {e}"}

    if response.status_code >= 400 or "error" in data:
        detail = (data.get("error") or {}).get("message") or response.reason_phrase
        logger.error(f"Google Search API error {response.status_code}: {detail}")
        return {"success": False, "error": f"Google Search API error: {detail}"}

    results = [
        {
            "title": item.get("title"),
            "link": item.get("link"),
            "snippet": item.get("snippet"),
            "source": item.get("displayLink"),
        }
        for item in data.get("items") or []
    ]
    return {"success": True, "query": query, "resultsCount": len(results), "results": results}


def extract_links(markdown: str, base_url: str) -> list[dict[str, str]]:
    """Absolute http(s) links found in converted markdown, de-duplicated in order."""
    seen: set[str] = set()
    links = []
    for text, href in _MARKDOWN_LINK_RE.findall(markdown):
        url = urljoin(base_url, href)
        if urlparse(url).scheme not in ("http", "https") or url in seen:
            continue
        seen.add(url)
        links.append({"text": text.strip(), "url": url})
    return links


def extract_code_blocks(markdown: str) -> str:
    return "\n\n".join(block.strip() for block in _FENCED_CODE_RE.findall(markdown) if block.strip())


async def web_scrape(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
    """Fetch a page and return its text content, links and code snippets."""
    url = args.get("url")
    if not url:
        return {"success": False, "error": "URL is required for web scraping."}

    failure: dict[str, Any] = {"success": False, "url": url, "textContent": None, "links": [], "codeContent": ""}

    try:
        async with httpx.AsyncClient(
            timeout=SCRAPE_TIMEOUT_SECONDS,
            follow_redirects=True,
            headers={"User-Agent": SCRAPE_USER_AGENT},
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Web scrape failed for {url}: {e}")
        return {**failure, "error": f"Web scraping failed for {url}. Detail: {e}"}

    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type in ("text/plain", "text/markdown"):
        markdown = response.text
    else:
        extension = ".pdf" if content_type == "application/pdf" else ".html"
        try:
            markdown = await convert_bytes_to_markdown(response.content, extension)
        except Exception as e:
            logger.warning(f"Could not convert {url} ({content_type}): {e}")
            return {**failure, "error": f"Web scraping failed for {url}. Detail: could not extract content: {e}"}

    if not markdown.strip():
        return {**failure, "error": f"Web scraping failed for {url}. Detail: no readable content found"}

    links = extract_links(markdown, str(response.url))
    code = extract_code_blocks(markdown)
    logger.info(f"Scraped {url}: {len(markdown):,} chars, {len(links)} links")

    return {
        "success": True,
        "url": str(response.url),
        "textContent": remove_control_characters(markdown),
        "links": links,
        "codeContent": remove_control_characters(code),
        "message": "Content, links, and code snippets extracted successfully.",
    }


WEB_TOOLS: list[ToolDefinition] = [
    ToolDefinition(
        name="web_search",
        description=(
            "Perform a web search using Google Custom Search to find information online. "
            "Use together with web_scrape to read the pages you find."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query."},
                "num": {
                    "type": "number",
                    "default": DEFAULT_SEARCH_RESULTS,
                    "description": "Number of search results to return (default 5, max 10).",
                },
            },
            "required": ["query"],
        },
        handler=web_search,
    ),
    ToolDefinition(
        name="web_scrape",
        description=(
            "Fetch a webpage URL and return its main text content, code snippets and discoverable links."
        ),
        parameters={
            "type": "object",
            "properties": {
                "url": {
                    "type": "string",
                    "description": "The fully qualified URL of the webpage to scrape (e.g., 'https://example.com/article').",
                },
            },
            "required": ["url"],
        },
        handler=web_scrape,
    ),
]


__all__ = ["WEB_TOOLS", "clamp_result_count", "extract_code_blocks", "extract_links", "web_scrape", "web_search"]
