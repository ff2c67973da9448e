"""Current date and time tool."""

from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field

from chathub.errors import ToolExecutionError
from chathub.tools.base import Tool


class CurrentDatetimeInput(BaseModel):
    """Input schema for the current datetime tool."""

    timezone: str | None = Field(
        default=None,
        description='Timezone (e.g., "UTC", "America/New_York"). Default is local time.',
    )


def create_current_datetime_tool(clock: Callable[[], datetime] | None = None) -> Tool:
    """Create the datetime tool.

    Args:
        clock: Returns the current aware datetime; tests pin it
    """
    now_fn = clock or (lambda: datetime.now().astimezone())

    async def get_current_datetime(params: CurrentDatetimeInput) -> str:
        now = now_fn()
        if params.timezone:
            try:
                now = now.astimezone(ZoneInfo(params.timezone))
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ToolExecutionError(f"Unknown timezone: {params.timezone}") from e
        return f"Current date and time: {now.strftime('%A')}, {now.isoformat()}"

    return Tool(
        name="get_current_datetime",
        description="Get the current date and time. Use this when you need to know the current time or date.",
        input_schema_class=CurrentDatetimeInput,
        handler=get_current_datetime,
        display_name="🕒 Getting Time",
    )
