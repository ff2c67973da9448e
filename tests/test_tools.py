"""Tests for tools, the tools registry and the Jina client."""

import asyncio
import json
from datetime import UTC, datetime, timedelta
from zoneinfo import available_timezones

import httpx
import pytest

from chathub.clients.jina import JinaClient, JinaConfig, SearchResult, SearchResults
from chathub.errors import JinaError
from chathub.tools.calculator import create_calculator_tool, evaluate_expression
from chathub.tools.current_datetime import create_current_datetime_tool
from chathub.tools.read_url import TRUNCATION_MARKER, create_read_url_tool
from chathub.tools.registry import ToolConfig, ToolsRegistry, build_default_registry
from chathub.tools.web_search import create_web_search_tool
from tests.conftest import make_tool

SEARCH_PAYLOAD = {
    "data": [
        {"title": "Python 3.13 released", "url": "https://python.org/news", "description": "Release notes"},
        {"title": "What's new", "url": "https://docs.python.org/whatsnew", "snippet": "Changes in 3.13"},
    ]
}


def jina_client(handler) -> JinaClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JinaClient(JinaConfig(api_key="jina-test-key"), http_client=http)


class TestToolsRegistry:
    """Tests for tool lookup and execution."""

    def test_lookup(self, registry):
        """Test that lookup returns definitions for known tools only."""
        definition = registry.lookup("lookup")

        assert definition is not None
        assert definition.name == "lookup"
        assert definition.description == "Test tool lookup"
        assert registry.lookup("missing") is None

    def test_duplicate_registration_rejected(self):
        """Test that tool names are unique within a registry."""
        registry = ToolsRegistry([make_tool("a")])

        with pytest.raises(ValueError, match="already registered"):
            registry.register_tool(make_tool("a"))

    def test_display_name_falls_back_to_tool_name(self, registry):
        """Test status labels for tools with and without display names."""
        assert registry.display_name("lookup") == "🔎 Lookup"
        assert registry.display_name("clock") == "clock"

    @pytest.mark.asyncio
    async def test_execute_success(self, registry):
        """Test a successful execution."""
        result = await registry.execute("clock", {"tz": "UTC"})

        assert result.success is True
        assert result.tool_name == "clock"
        assert "'tz': 'UTC'" in result.content
        assert result.execution_time_ms is not None

    @pytest.mark.asyncio
    async def test_execute_unknown_tool(self, registry):
        """Test that unknown tools give a failure result instead of raising."""
        result = await registry.execute("nope", {})

        assert result.success is False
        assert result.content == "Error: Unknown tool nope"

    @pytest.mark.asyncio
    async def test_execute_missing_required_argument(self):
        """Test that validation errors name the missing field."""
        registry = ToolsRegistry([create_calculator_tool()])

        result = await registry.execute("calculator", {})

        assert result.success is False
        assert result.content.startswith("Invalid arguments for calculator")
        assert "expression" in result.content

    @pytest.mark.asyncio
    async def test_execute_unexpected_exception(self):
        """Test that arbitrary handler exceptions are converted."""

        async def boom(params):
            raise RuntimeError("kaput")

        registry = ToolsRegistry([make_tool("boom", boom)])

        result = await registry.execute("boom", {})

        assert result.success is False
        assert result.content == "Error: kaput"

    @pytest.mark.asyncio
    async def test_execute_timeout(self):
        """Test that slow tools are cut off at the registry timeout."""

        async def slow(params):
            await asyncio.sleep(5)
            return "late"

        registry = ToolsRegistry([make_tool("slow", slow)], timeout_seconds=0.05)

        result = await registry.execute("slow", {})

        assert result.success is False
        assert "timed out" in result.content


class TestDefaultRegistry:
    """Tests for registry assembly from configuration."""

    def test_without_jina_only_local_tools(self):
        """Test that web tools need a Jina client."""
        registry = build_default_registry(ToolConfig())

        assert registry.get_tool_names() == ["get_current_datetime", "calculator"]

    def test_with_jina_includes_web_tools(self):
        """Test that web search and URL reading are offered with a client."""
        registry = build_default_registry(ToolConfig(), JinaClient(JinaConfig(api_key="k")))

        assert registry.get_tool_names() == ["get_current_datetime", "web_search", "read_url", "calculator"]

    def test_disabled_tools(self):
        """Test that disabling tools yields an empty registry."""
        registry = build_default_registry(ToolConfig(enabled=False), JinaClient(JinaConfig(api_key="k")))

        assert len(registry) == 0

    def test_schemas_are_model_facing(self):
        """Test that generated schemas carry types, descriptions and required fields."""
        registry = build_default_registry(ToolConfig(), JinaClient(JinaConfig(api_key="k")))

        schema = registry.lookup("web_search").parameters

        assert schema["type"] == "object"
        assert schema["required"] == ["query"]
        assert schema["properties"]["query"]["type"] == "string"
        assert "search query" in schema["properties"]["query"]["description"]
        assert "title" not in schema


class TestCalculator:
    """Tests for the calculator tool."""

    @pytest.mark.parametrize(
        ("expression", "expected"),
        [("2 + 3 * 4", 14), ("(2 + 3) * 4", 20), ("7 // 2", 3), ("7 % 4", 3), ("-2 ** 2", -4), ("1 / 4", 0.25)],
    )
    def test_arithmetic(self, expression, expected):
        """Test supported operators."""
        assert evaluate_expression(expression) == expected

    @pytest.mark.asyncio
    async def test_rejects_names_and_calls(self):
        """Test that anything beyond arithmetic is a failure result."""
        registry = ToolsRegistry([create_calculator_tool()])

        result = await registry.execute("calculator", {"expression": "__import__('os').system('ls')"})

        assert result.success is False
        assert "Unsupported expression" in result.content

    @pytest.mark.asyncio
    async def test_division_by_zero(self):
        """Test that division by zero is reported, not raised."""
        registry = ToolsRegistry([create_calculator_tool()])

        result = await registry.execute("calculator", {"expression": "1 / 0"})

        assert result.success is False
        assert result.content == "Division by zero"

    @pytest.mark.asyncio
    async def test_huge_exponent_rejected(self):
        """Test that exponent blowups are refused."""
        registry = ToolsRegistry([create_calculator_tool()])

        result = await registry.execute("calculator", {"expression": "9 ** 99999"})

        assert result.success is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "expression", ["((9 ** 999) ** 999) ** 999", "(2 ** 999) ** 999", "(9 ** 999) * (9 ** 999) * (9 ** 999) * (9 ** 999)"]
    )
    async def test_nested_growth_rejected(self, expression):
        """Test that results too large to compute quickly are refused before computing."""
        registry = ToolsRegistry([create_calculator_tool()], timeout_seconds=0.5)

        result = await asyncio.wait_for(registry.execute("calculator", {"expression": expression}), timeout=5)

        assert result.success is False
        assert result.content == "Result is too large"

    def test_large_results_within_limit(self):
        """Test that big but bounded integers are still computed exactly."""
        assert evaluate_expression("2 ** 1000") == 2**1000
        assert evaluate_expression("(9 ** 999) * 2") == 9**999 * 2

    @pytest.mark.asyncio
    async def test_formats_result(self):
        """Test the text handed back to the model."""
        registry = ToolsRegistry([create_calculator_tool()])

        result = await registry.execute("calculator", {"expression": "10 / 4 * 2"})

        assert result.content == "10 / 4 * 2 = 5"


class TestCurrentDatetime:
    """Tests for the datetime tool."""

    @staticmethod
    def fixed_clock():
        return datetime(2025, 1, 15, 12, 30, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_default_timezone(self):
        """Test output without a timezone argument."""
        registry = ToolsRegistry([create_current_datetime_tool(self.fixed_clock)])

        result = await registry.execute("get_current_datetime", {})

        assert result.content == "Current date and time: Wednesday, 2025-01-15T12:30:00+00:00"

    @pytest.mark.skipif("America/New_York" not in available_timezones(), reason="tz database not installed")
    @pytest.mark.asyncio
    async def test_named_timezone(self):
        """Test conversion into an IANA timezone."""
        registry = ToolsRegistry([create_current_datetime_tool(self.fixed_clock)])

        result = await registry.execute("get_current_datetime", {"timezone": "America/New_York"})

        assert result.content == "Current date and time: Wednesday, 2025-01-15T07:30:00-05:00"

    @pytest.mark.asyncio
    async def test_unknown_timezone(self):
        """Test that an unknown zone is a failure result."""
        registry = ToolsRegistry([create_current_datetime_tool(self.fixed_clock)])

        result = await registry.execute("get_current_datetime", {"timezone": "Mars/Olympus_Mons"})

        assert result.success is False
        assert "Unknown timezone" in result.content


class TestSearchResults:
    """Tests for search result formatting."""

    def test_text_summary(self):
        """Test the numbered summary given to the model."""
        results = SearchResults(
            query="python",
            results=[SearchResult(title="Python", url="https://python.org", snippet="Official site")],
        )

        assert results.to_text_summary() == (
            'Web search results for "python":\n\n1. Python\n   URL: https://python.org\n   Official site\n'
        )

    def test_empty_summary(self):
        """Test the message for a query without hits."""
        assert SearchResults(query="zzz").to_text_summary() == 'No search results found for "zzz".'


class TestJinaClient:
    """Tests for the Jina client against a mock HTTP transport."""

    @pytest.mark.asyncio
    async def test_search_request_and_parsing(self):
        """Test request shape and snippet fallback to description."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=SEARCH_PAYLOAD)

        client = jina_client(handler)
        results = await client.search("Python release", limit=2)

        request = seen[0]
        assert request.method == "POST"
        assert request.url.host == "s.jina.ai"
        assert request.headers["Authorization"] == "Bearer jina-test-key"
        assert json.loads(request.content) == {"q": "Python release", "num": 2}
        assert [r.snippet for r in results.results] == ["Release notes", "Changes in 3.13"]

    @pytest.mark.asyncio
    async def test_search_is_cached_case_insensitively(self):
        """Test that repeated queries hit the cache."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=SEARCH_PAYLOAD)

        client = jina_client(handler)
        await client.search("Python")
        await client.search("python")

        assert calls == 1

    @pytest.mark.asyncio
    async def test_expired_results_are_evicted(self):
        """Test that stale cache entries are refetched and dropped."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=SEARCH_PAYLOAD)

        client = jina_client(handler)
        client.config.cache_ttl = timedelta(seconds=-1)
        await client.search("python")
        await client.search("python")
        await client.search("rust")

        assert calls == 3
        assert list(client._search_cache) == ["rust_en"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "check"),
        [(401, "is_auth_error"), (429, "is_rate_limited")],
    )
    async def test_search_status_errors(self, status, check):
        """Test that HTTP failures map to typed errors."""
        client = jina_client(lambda request: httpx.Response(status))

        with pytest.raises(JinaError) as exc_info:
            await client.search("anything")

        assert exc_info.value.status_code == status
        assert getattr(exc_info.value, check) is True

    @pytest.mark.asyncio
    async def test_search_network_error(self):
        """Test that connection failures are network errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route to host")

        with pytest.raises(JinaError) as exc_info:
            await jina_client(handler).search("anything")

        assert exc_info.value.is_network_error is True

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self):
        """Test input validation before any request is made."""
        with pytest.raises(JinaError, match="cannot be empty"):
            await jina_client(lambda request: httpx.Response(200)).search("   ")

    @pytest.mark.asyncio
    async def test_fetch_content(self):
        """Test that the reader is called with the target URL appended."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, text="# Page title\nBody")

        content = await jina_client(handler).fetch_content("https://example.com/page")

        assert content == "# Page title\nBody"
        assert len(seen) == 1
        assert seen[0].startswith("https://r.jina.ai/")
        assert seen[0].endswith("example.com/page")

    @pytest.mark.asyncio
    async def test_fetch_rejects_non_http_urls(self):
        """Test that only web URLs are fetched."""
        with pytest.raises(JinaError, match="Invalid URL"):
            await jina_client(lambda request: httpx.Response(200)).fetch_content("ftp://example.com")


class TestWebTools:
    """Tests for the web search and URL reader tools."""

    @pytest.mark.asyncio
    async def test_web_search_returns_summary(self):
        """Test a successful search through the registry."""
        registry = ToolsRegistry([create_web_search_tool(jina_client(lambda r: httpx.Response(200, json=SEARCH_PAYLOAD)))])

        result = await registry.execute("web_search", {"query": "python"})

        assert result.success is True
        assert result.content.startswith('Web search results for "python":')
        assert "URL: https://python.org/news" in result.content

    @pytest.mark.asyncio
    async def test_web_search_clamps_result_count(self):
        """Test that requested result counts are limited to 10."""
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"data": []})

        registry = ToolsRegistry([create_web_search_tool(jina_client(handler))])
        await registry.execute("web_search", {"query": "python", "num_results": 40})

        assert bodies[0]["num"] == 10

    @pytest.mark.asyncio
    async def test_web_search_auth_failure_message(self):
        """Test the failure text for a rejected API key."""
        registry = ToolsRegistry([create_web_search_tool(jina_client(lambda r: httpx.Response(401)))])

        result = await registry.execute("web_search", {"query": "python"})

        assert result.success is False
        assert "Invalid Jina API key" in result.content

    @pytest.mark.asyncio
    async def test_web_search_blank_query(self):
        """Test that a blank query is a validation failure."""
        registry = ToolsRegistry([create_web_search_tool(jina_client(lambda r: httpx.Response(200)))])

        result = await registry.execute("web_search", {"query": "  "})

        assert result.success is False
        assert "Search query is required" in result.content

    @pytest.mark.asyncio
    async def test_read_url_truncates_long_pages(self):
        """Test that page text is cut at 10,000 characters with a marker."""
        registry = ToolsRegistry([create_read_url_tool(jina_client(lambda r: httpx.Response(200, text="x" * 12_000)))])

        result = await registry.execute("read_url", {"url": "https://example.com"})

        assert result.success is True
        assert result.content.startswith("x" * 10_000 + "\n\n")
        assert result.content.endswith(TRUNCATION_MARKER)

    @pytest.mark.asyncio
    async def test_read_url_http_failure(self):
        """Test that reader failures become failure results."""
        registry = ToolsRegistry([create_read_url_tool(jina_client(lambda r: httpx.Response(502)))])

        result = await registry.execute("read_url", {"url": "https://example.com"})

        assert result.success is False
        assert result.content == "Failed to read URL: Failed to fetch URL: HTTP 502"
