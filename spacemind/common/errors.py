"""
Error types shared across spacemind.

Validation errors are raised synchronously by the pure retrieval functions.
Collaborator failures for memory and web search degrade to empty results;
only the generation collaborator surfaces as AssistantUnavailableError.
"""


class SpacemindError(Exception):
    """Base class for spacemind errors."""
    pass


class ValidationError(SpacemindError, ValueError):
    """Malformed or missing input to a retrieval function."""
    pass


class AssistantUnavailableError(SpacemindError, RuntimeError):
    """The generation collaborator is missing or misconfigured."""

    DEFAULT_MESSAGE = (
        "AI assistant unavailable: configure an API key for the selected "
        "LLM provider (e.g. GEMINI_API_KEY) and try again."
    )

    def __init__(self, message: str = DEFAULT_MESSAGE):
        super().__init__(message)


class UnknownActionError(SpacemindError, KeyError):
    """Requested action name is not in the dispatch table."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"Unknown action: {self.name}"


class StoreError(SpacemindError, RuntimeError):
    """The node store cannot be read or safely written."""
    pass
