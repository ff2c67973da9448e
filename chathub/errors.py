"""Exception hierarchy for the chat service.

Tool failures never escape the tool registry; transport failures always
escape the agent loop. Everything else is a precondition violation.
"""


class ChatHubError(Exception):
    """Base exception for all chat service errors."""


class TransportError(ChatHubError):
    """The model backend could not be reached or returned an error."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransportUnavailableError(TransportError):
    """The requested inference engine does not exist on this platform."""

    def __init__(self, engine: str, reason: str):
        self.engine = engine
        self.reason = reason
        super().__init__(f"Inference engine '{engine}' is unavailable: {reason}")


class ConversationNotFoundError(ChatHubError):
    """No conversation with the given id exists in the store."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class ToolCallingDisabledError(ChatHubError):
    """The agent loop was entered for a conversation with tool calling off."""


class MalformedTurnError(ChatHubError):
    """The model produced a turn that cannot be resolved deterministically."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed model turn: {reason}")


class ToolExecutionError(ChatHubError):
    """Raised by tool handlers; the message is shown to the model verbatim."""


class JinaError(ChatHubError):
    """Search/reader backend request failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message if status_code is None else f"{message} (Status: {status_code})")

    @property
    def is_rate_limited(self) -> bool:
        """Whether the backend rejected the request for rate limiting."""
        return self.status_code == 429

    @property
    def is_auth_error(self) -> bool:
        """Whether the API key was rejected."""
        return self.status_code == 401

    @property
    def is_network_error(self) -> bool:
        """Whether the request never produced an HTTP response."""
        return self.status_code is None or self.status_code == -1


def format_user_facing_error(error: BaseException | str) -> str:
    """Map a raw failure to text suitable for an error bubble in the UI."""
    raw = str(error)
    lowered = raw.lower()

    if isinstance(error, TransportUnavailableError):
        return f"{error.reason}. Pick a remote model or try again once the engine is ready."
    if "max iterations" in lowered:
        return "The assistant used too many tool steps without reaching an answer. Try rephrasing the question."
    if "timed out" in lowered or "timeout" in lowered:
        return "The model server took too long to respond. Check that it is running and try again."
    if "connect" in lowered or "connection" in lowered:
        return "Could not reach the model server. Check the connection settings and that the server is running."
    if "not found" in lowered and "model" in lowered:
        return "The selected model is not installed on the server. Pull it first or pick another model."
    return raw
