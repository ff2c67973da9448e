"""Web search tool."""

from pydantic import BaseModel, Field, field_validator

from chathub.clients.jina import JinaClient
from chathub.errors import JinaError, ToolExecutionError
from chathub.tools.base import Tool

DESCRIPTION = (
    "Search the web for current information. Use this when you need up-to-date information, "
    "facts, news, or when the user asks about recent events or topics that may have changed "
    "since your training data."
)


class WebSearchInput(BaseModel):
    """Input schema for the web search tool."""

    query: str = Field(..., description="The search query to find relevant information")
    num_results: int | None = Field(default=None, description="Number of results to return (1-10, default 5)")

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Search query is required")
        return v.strip()


def describe_search_failure(error: JinaError) -> str:
    """Failure text shown to the model for a failed search."""
    if error.is_auth_error:
        return "❌ Invalid Jina API key. Please check your settings and ensure the key is correct."
    if error.is_rate_limited:
        return "⏱️ Search rate limit exceeded. Please wait a moment and try again."
    if error.status_code == 404:
        return (
            "❌ Jina API endpoint not accessible. Your API key may not have web search enabled "
            "or the subscription is invalid."
        )
    if error.is_network_error:
        return f"🌐 Network error: {error.message}\n\nPlease check your internet connection and try again."
    return f"❌ Search failed: {error.message}"


def create_web_search_tool(jina_client: JinaClient, max_results: int = 5) -> Tool:
    """Create the web search tool bound to a Jina client."""

    async def web_search(params: WebSearchInput) -> str:
        limit = max(1, min(params.num_results or max_results, 10))
        try:
            results = await jina_client.search(params.query, limit=limit)
        except JinaError as e:
            raise ToolExecutionError(describe_search_failure(e)) from e
        return results.to_text_summary()

    return Tool(
        name="web_search",
        description=DESCRIPTION,
        input_schema_class=WebSearchInput,
        handler=web_search,
        display_name="🔍 Web Search",
    )
