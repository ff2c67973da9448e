"""Jina search (s.jina.ai) and reader (r.jina.ai) client."""

import asyncio
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import httpx
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from chathub.errors import JinaError
from chathub.models.messages import utc_now
from chathub.utils.logging import get_logger

logger = get_logger(__name__)

SEARCH_URL = "https://s.jina.ai/"
READER_URL = "https://r.jina.ai"


@dataclass
class JinaConfig:
    """Configuration for the Jina client."""

    api_key: str | None = None
    search_timeout: float = 30.0
    reader_timeout: float = 60.0
    requests_per_minute: int = 100
    cache_ttl: timedelta = timedelta(hours=24)

    @classmethod
    def from_env(cls) -> "JinaConfig":
        """Build configuration from the environment."""
        return cls(api_key=os.getenv("JINA_API_KEY") or None)


@dataclass(frozen=True)
class SearchResult:
    """A single ranked search hit."""

    title: str
    url: str
    snippet: str

    @classmethod
    def from_json(cls, data: dict) -> "SearchResult":
        return cls(
            title=data.get("title") or "",
            url=data.get("url") or "",
            snippet=data.get("snippet") or data.get("description") or "",
        )


@dataclass
class SearchResults:
    """Results for one query, possibly served from cache."""

    query: str
    results: list[SearchResult] = field(default_factory=list)
    cached_at: datetime | None = None

    def is_expired(self, ttl: timedelta) -> bool:
        return self.cached_at is not None and utc_now() - self.cached_at > ttl

    def to_text_summary(self) -> str:
        """Format results as text for the model."""
        if not self.results:
            return f'No search results found for "{self.query}".'

        lines = [f'Web search results for "{self.query}":', ""]
        for i, result in enumerate(self.results, start=1):
            lines.append(f"{i}. {result.title}")
            lines.append(f"   URL: {result.url}")
            lines.append(f"   {result.snippet}")
            lines.append("")
        return "\n".join(lines)


class JinaRateLimiter:
    """Moving-window request limiter shared by search and reader calls."""

    def __init__(self, requests_per_minute: int = 100):
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)
        self.request_limit = parse(f"{requests_per_minute}/minute")

    async def wait_for_slot(self, identifier: str = "jina") -> None:
        """Block until a request slot is available in the current window."""
        while not self.limiter.hit(self.request_limit, identifier):
            window_stats = self.limiter.get_window_stats(self.request_limit, identifier)
            wait_time = max(0.1, window_stats.reset_time - time.time())
            logger.warning(f"Jina rate limit reached, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)


class JinaClient:
    """Async client for Jina web search and page reading."""

    def __init__(self, config: JinaConfig, http_client: httpx.AsyncClient | None = None):
        """Initialize Jina client.

        Args:
            config: Client configuration, must carry an API key for search
            http_client: Optional preconfigured httpx client
        """
        self.config = config
        self.http = http_client or httpx.AsyncClient()
        self.rate_limiter = JinaRateLimiter(config.requests_per_minute)
        self._search_cache: dict[str, SearchResults] = {}

    async def aclose(self) -> None:
        await self.http.aclose()

    @staticmethod
    def _cache_key(query: str, lang: str) -> str:
        return f"{query.lower()}_{lang}"

    def clear_cache(self) -> None:
        self._search_cache.clear()

    def _evict_expired(self) -> None:
        expired = [key for key, cached in self._search_cache.items() if cached.is_expired(self.config.cache_ttl)]
        for key in expired:
            del self._search_cache[key]

    async def search(self, query: str, limit: int = 5, lang: str = "en") -> SearchResults:
        """Search the web.

        Raises:
            JinaError: On invalid input, HTTP errors, timeouts and network failures
        """
        if not query.strip():
            raise JinaError("Search query cannot be empty")
        if not 1 <= limit <= 50:
            raise JinaError("Limit must be between 1 and 50")

        cache_key = self._cache_key(query, lang)
        cached = self._search_cache.get(cache_key)
        if cached is not None:
            if not cached.is_expired(self.config.cache_ttl):
                logger.debug(f"Search cache hit for '{query}'")
                return cached
            del self._search_cache[cache_key]

        await self.rate_limiter.wait_for_slot()

        body: dict[str, object] = {"q": query, "num": limit}
        if lang != "en":
            body["hl"] = lang

        try:
            response = await self.http.post(
                SEARCH_URL,
                json=body,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Accept": "application/json",
                },
                timeout=self.config.search_timeout,
            )
        except httpx.TimeoutException as e:
            raise JinaError(f"Request timeout after {self.config.search_timeout:g} seconds", status_code=-1) from e
        except httpx.HTTPError as e:
            raise JinaError(f"Network error: {e}") from e

        if response.status_code == 401:
            raise JinaError("Invalid API key", status_code=401)
        if response.status_code == 429:
            raise JinaError("Rate limit exceeded. Please wait.", status_code=429)
        if response.status_code == 404:
            raise JinaError("Search endpoint not found", status_code=404)
        if response.status_code != 200:
            raise JinaError(f"HTTP {response.status_code}: {response.reason_phrase}", status_code=response.status_code)

        data = response.json()
        results = SearchResults(
            query=query,
            results=[SearchResult.from_json(item) for item in data.get("data") or data.get("results") or []],
            cached_at=utc_now(),
        )
        self._evict_expired()
        self._search_cache[cache_key] = results
        logger.info(f"Search for '{query}' returned {len(results.results)} results")
        return results

    async def fetch_content(self, url: str) -> str:
        """Fetch a page as readable text.

        Raises:
            JinaError: On invalid URL, HTTP errors, timeouts and network failures
        """
        if not url.strip():
            raise JinaError("URL cannot be empty")
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL as e:
            raise JinaError(f"Invalid URL: {e}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise JinaError(f"Invalid URL: {url}")

        await self.rate_limiter.wait_for_slot()

        headers = {"User-Agent": "PrivateChatHub/1.0", "Accept": "text/plain"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        try:
            response = await self.http.get(f"{READER_URL}/{url}", headers=headers, timeout=self.config.reader_timeout)
        except httpx.TimeoutException as e:
            raise JinaError(f"Request timeout after {self.config.reader_timeout:g} seconds", status_code=-1) from e
        except httpx.HTTPError as e:
            raise JinaError(f"Error fetching content: {e}") from e

        if response.status_code != 200:
            raise JinaError(f"Failed to fetch URL: HTTP {response.status_code}", status_code=response.status_code)
        return response.text
