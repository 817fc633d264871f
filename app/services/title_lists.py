"""Collect candidate titles from curated IMDb and editorial list pages."""

from __future__ import annotations

import asyncio
import html
import json
import logging
import re
from dataclasses import dataclass

import httpx

from ..buckets import ListSource

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

IMDB_LIST_URL = "https://www.imdb.com/list/{list_id}/"

JSON_LD_RE = re.compile(
    r"<script type=\"application/ld\+json\">(.*?)</script>", re.DOTALL
)
TRAILING_YEAR_RE = re.compile(r"\s*\((\d{4})\)\s*$")
IMDB_EMBEDDED_RE = re.compile(
    r"\"titleText\":\{\"text\":\"([^\"]+)\"\}.*?\"releaseYear\":\{\"year\":(\d{4})",
    re.DOTALL,
)
GENERIC_TITLE_YEAR_RE = re.compile(
    r"(?:^|\n)\s*[#\d.]*\s*[\"']?([^\"'\n]{2,80})[\"']?\s*\((\d{4})\)",
    re.MULTILINE,
)

MIN_YEAR = 1900
MAX_YEAR = 2030


@dataclass(frozen=True, slots=True)
class TitleCandidate:
    """A title/year pair scraped from a list page, not yet resolved."""

    title: str
    year: int | None = None


class TitleListClient:
    """Fetches list pages and extracts the titles they rank."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        concurrency: int = 2,
        request_delay: float = 0.5,
        max_retries: int = 2,
    ) -> None:
        self._client = http_client
        self._semaphore = asyncio.Semaphore(concurrency)
        self._request_delay = request_delay
        self._max_retries = max_retries

    async def fetch_titles(self, source: ListSource) -> list[TitleCandidate]:
        """Return the unique titles listed by ``source``; empty on failure."""

        if source.kind == "imdb":
            url = IMDB_LIST_URL.format(list_id=source.ref)
        else:
            url = source.ref
        page = await self._fetch_page(url)
        if not page:
            return []

        if source.kind == "imdb":
            items = parse_imdb_list(page)
        else:
            items = parse_editorial_list(page, source.pattern)
        unique = dedupe_titles(items)
        logger.info("Fetched %s titles from %s", len(unique), url)
        return unique

    async def _fetch_page(self, url: str) -> str:
        attempt = 0
        while True:
            try:
                async with self._semaphore:
                    response = await self._client.get(
                        url, headers=BROWSER_HEADERS, follow_redirects=True
                    )
                    if self._request_delay:
                        await asyncio.sleep(self._request_delay)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    await asyncio.sleep(min(2 ** (attempt - 1), 5))
                    continue
                logger.warning("List page fetch failed for %s: %s", url, exc)
                return ""
            if 500 <= response.status_code < 600 and attempt < self._max_retries:
                attempt += 1
                await asyncio.sleep(min(2 ** (attempt - 1), 5))
                continue
            if response.status_code >= 400:
                logger.warning(
                    "List page fetch failed for %s: %s", url, response.status_code
                )
                return ""
            return response.text


def parse_imdb_list(page: str) -> list[TitleCandidate]:
    """Extract titles from an IMDb list page.

    The JSON-LD block is preferred; the embedded page state is used when the
    structured data is missing or unparseable.
    """

    items: list[TitleCandidate] = []
    match = JSON_LD_RE.search(page)
    if match:
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("Failed to parse IMDb JSON-LD, falling back to page state")
            data = {}
        elements = data.get("itemListElement") if isinstance(data, dict) else None
        for element in elements or []:
            item = element.get("item") if isinstance(element, dict) else None
            name = item.get("name") if isinstance(item, dict) else None
            if not isinstance(name, str) or not name.strip():
                continue
            year_match = TRAILING_YEAR_RE.search(name)
            title = TRAILING_YEAR_RE.sub("", name).strip()
            year = int(year_match.group(1)) if year_match else None
            items.append(TitleCandidate(html.unescape(title), year))

    if not items:
        for title, year in IMDB_EMBEDDED_RE.findall(page):
            items.append(TitleCandidate(html.unescape(title), int(year)))
    return items


def parse_editorial_list(page: str, pattern: str | None) -> list[TitleCandidate]:
    """Extract ``Title (Year)`` entries from an editorial list page."""

    items: list[TitleCandidate] = []
    if pattern:
        items = _collect(re.compile(pattern), page)
    if not items:
        items = _collect(GENERIC_TITLE_YEAR_RE, page)
    return items


def dedupe_titles(items: list[TitleCandidate]) -> list[TitleCandidate]:
    seen: set[tuple[str, int | None]] = set()
    unique: list[TitleCandidate] = []
    for item in items:
        key = (item.title.casefold(), item.year)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def _collect(pattern: re.Pattern[str], page: str) -> list[TitleCandidate]:
    items: list[TitleCandidate] = []
    for match in pattern.finditer(page):
        title = html.unescape((match.group(1) or "").strip())
        try:
            year = int(match.group(2))
        except (TypeError, ValueError):
            continue
        if len(title) > 1 and MIN_YEAR <= year <= MAX_YEAR:
            items.append(TitleCandidate(title, year))
    return items
