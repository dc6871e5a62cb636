class APICopilotError(Exception):
    """Base exception for the service."""


class UpstreamLLMError(APICopilotError):
    """Raised when the upstream LLM returns an error."""


class ApiDescriptionError(APICopilotError):
    """Raised when the OpenAPI description is missing or invalid."""


class ToolParameterError(APICopilotError):
    """Raised when a parameter bag cannot be turned into an HTTP request."""

    def __init__(self, message: str, missing: tuple = ()) -> None:
        super().__init__(message)
        self.missing = tuple(missing)
