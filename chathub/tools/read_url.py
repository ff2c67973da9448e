"""URL reader tool."""

from pydantic import BaseModel, Field

from chathub.clients.jina import JinaClient
from chathub.errors import JinaError, ToolExecutionError
from chathub.tools.base import Tool

MAX_CONTENT_CHARS = 10_000
TRUNCATION_MARKER = "[Content truncated - showing first 10,000 characters]"


class ReadUrlInput(BaseModel):
    """Input schema for the URL reader tool."""

    url: str = Field(..., min_length=1, description="The URL to fetch and read")


def truncate_content(content: str) -> str:
    """Limit page text to what is useful to hand to the model."""
    if len(content) <= MAX_CONTENT_CHARS:
        return content
    return f"{content[:MAX_CONTENT_CHARS]}\n\n{TRUNCATION_MARKER}"


def create_read_url_tool(jina_client: JinaClient) -> Tool:
    """Create the URL reader tool bound to a Jina client."""

    async def read_url(params: ReadUrlInput) -> str:
        try:
            content = await jina_client.fetch_content(params.url.strip())
        except JinaError as e:
            raise ToolExecutionError(f"Failed to read URL: {e.message}") from e
        return truncate_content(content)

    return Tool(
        name="read_url",
        description=(
            "Fetch and read the content of a web page. Use this when you need to read specific "
            "content from a URL the user provided or from search results."
        ),
        input_schema_class=ReadUrlInput,
        handler=read_url,
        display_name="📖 Reading URL",
    )
