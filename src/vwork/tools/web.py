from __future__ import annotations

import html
import logging
import os
import re
from typing import Any
from urllib.parse import urlparse

import httpx

from common.cancel import CancelToken, is_cancelled
from vwork.errors import AbortedError, ToolExecutionError
from vwork.llm.provider import LLMTool, ToolCall
from vwork.tools.context import ToolContext, optional_int, require_str

logger = logging.getLogger(__name__)

MAX_RESPONSE_BYTES = 5 * 1024 * 1024
MAX_OUTPUT = 30_000
DEFAULT_TIMEOUT_MS = 30_000
MAX_TIMEOUT_MS = 120_000

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_SCRIPT_RE = re.compile(r"<(script|style|nav|footer|iframe)\b[\s\S]*?</\1>", re.IGNORECASE)
_BLOCK_RE = re.compile(r"</?(p|div|br|li|tr|h[1-6]|section|article|header)\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACES_RE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


class WebFetchError(ToolExecutionError):
    pass


class WebSearchError(ToolExecutionError):
    pass


def html_to_text(markup: str) -> str:
    text = _SCRIPT_RE.sub("", markup)
    text = _BLOCK_RE.sub("\n", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    text = _SPACES_RE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.splitlines())
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def _read_body(response: httpx.Response, cancel: CancelToken | None) -> str:
    declared = int(response.headers.get("content-length") or 0)
    if declared > MAX_RESPONSE_BYTES:
        raise WebFetchError(f"response too large ({declared / 1024 / 1024:.1f}MB, max 5MB)")

    chunks: list[bytes] = []
    size = 0
    for chunk in response.iter_bytes():
        if is_cancelled(cancel):
            raise AbortedError("fetch aborted")
        size += len(chunk)
        if size > MAX_RESPONSE_BYTES:
            raise WebFetchError(f"response too large (>{MAX_RESPONSE_BYTES // 1024 // 1024}MB)")
        chunks.append(chunk)

    encoding = response.encoding or "utf-8"
    return b"".join(chunks).decode(encoding, errors="replace")


def fetch_url(
    url: str,
    *,
    fmt: str = "text",
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    cancel: CancelToken | None = None,
    client: httpx.Client | None = None,
) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise WebFetchError(f"invalid URL: {url}")
    if parsed.scheme not in ("http", "https"):
        raise WebFetchError("only HTTP/HTTPS URLs are supported")

    timeout_s = min(MAX_TIMEOUT_MS, max(1, timeout_ms)) / 1000
    owned = client is None
    if client is None:
        client = httpx.Client(timeout=timeout_s, follow_redirects=True)

    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    }
    try:
        with client.stream("GET", url, headers=headers, timeout=timeout_s) as response:
            if response.status_code >= 400:
                raise WebFetchError(f"HTTP {response.status_code} {response.reason_phrase}")
            body = _read_body(response, cancel)
            content_type = response.headers.get("content-type", "")
    except httpx.TimeoutException as e:
        raise WebFetchError(f"request timed out after {timeout_s:g}s") from e
    except httpx.HTTPError as e:
        raise WebFetchError(str(e) or e.__class__.__name__) from e
    finally:
        if owned:
            client.close()

    if fmt == "html" or "html" not in content_type:
        output = body
    else:
        output = html_to_text(body)

    if len(output) > MAX_OUTPUT:
        output = output[:MAX_OUTPUT] + f"\n\n... (content truncated at {MAX_OUTPUT} bytes)"
    return output


def webfetch(call: ToolCall, ctx: ToolContext) -> str:
    url = require_str(call.input, "url")
    fmt = call.input.get("format") or "text"
    if fmt not in ("text", "html"):
        raise WebFetchError(f"unsupported format: {fmt}")
    timeout_ms = optional_int(call.input, "timeout", DEFAULT_TIMEOUT_MS)
    logger.info(f"Fetching {url}")
    return fetch_url(url, fmt=fmt, timeout_ms=timeout_ms, cancel=ctx.cancel)


def web_search(
    *,
    query: str,
    max_results: int = 5,
    include_domains: list[str] | None = None,
    exclude_domains: list[str] | None = None,
    days: int | None = None,
) -> dict[str, Any]:
    query = (query or "").strip()
    if not query:
        raise WebSearchError("query is required")

    api_key = os.environ.get("TAVILY_API_KEY")
    if not api_key:
        raise WebSearchError("TAVILY_API_KEY is not set")

    try:
        from tavily import TavilyClient  # type: ignore[import-not-found]
    except Exception as e:  # pragma: no cover
        raise WebSearchError(
            "tavily-python is not installed. Install with: `pip install vwork[search]`."
        ) from e

    payload: dict[str, Any] = {
        "query": query,
        "max_results": max(1, min(20, int(max_results or 5))),
    }
    if include_domains:
        payload["include_domains"] = include_domains
    if exclude_domains:
        payload["exclude_domains"] = exclude_domains
    if days is not None:
        payload["days"] = int(days)

    resp = TavilyClient(api_key=api_key).search(**payload)
    results = resp.get("results") if isinstance(resp, dict) else None
    if not isinstance(results, list):
        results = []

    return {
        "query": query,
        "results": [
            {
                "url": r.get("url"),
                "title": (r.get("title") or "").strip(),
                "snippet": (r.get("content") or "").strip()[:500],
            }
            for r in results
            if isinstance(r, dict) and isinstance(r.get("url"), str)
        ],
    }


def web_search_tool(call: ToolCall, ctx: ToolContext) -> dict[str, Any]:
    return web_search(
        query=require_str(call.input, "query"),
        max_results=optional_int(call.input, "max_results", 5),
        include_domains=call.input.get("include_domains"),
        exclude_domains=call.input.get("exclude_domains"),
        days=call.input.get("days"),
    )


WEBFETCH_TOOL = LLMTool(
    name="vwork__webfetch",
    description=(
        "Fetch content from a URL. HTML pages are converted to readable text. "
        "Use this to read web pages, documentation, articles, etc."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL to fetch"},
            "format": {
                "type": "string",
                "enum": ["text", "html"],
                "description": "Output format: text (default, strips tags) or html (raw)",
            },
            "timeout": {
                "type": "integer",
                "description": "Timeout in milliseconds (default: 30000, max: 120000)",
            },
        },
        "required": ["url"],
    },
)

WEB_SEARCH_TOOL = LLMTool(
    name="vwork__web_search",
    description="Search the web (Tavily). Returns result URLs, titles and snippets.",
    input_schema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query"},
            "max_results": {"type": "integer", "description": "Number of results (1-20)", "default": 5},
            "include_domains": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Only include results from these domains",
            },
            "exclude_domains": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Exclude results from these domains",
            },
            "days": {"type": "integer", "description": "Only include results from the last N days"},
        },
        "required": ["query"],
    },
)
