class PatchPilotError(Exception):
    """Base exception for all expected patchpilot errors."""

    message: str
    exit_code: int

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class ConfigurationError(PatchPilotError):
    """Configuration related errors (env vars, settings values)."""


class InvalidRequestError(PatchPilotError):
    """Caller misuse, e.g. an empty SEARCH block or an unknown strategy."""


class ApiError(PatchPilotError):
    """Abnormal termination of an LLM backend stream."""

    retryable: bool = False


class NetworkError(ApiError):
    """Transport or backend failure. Retryable per the task's resubmit policy."""

    retryable = True
    status_code: int | None

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ApiError):
    """Malformed or unexpected backend payload. Never retried."""


class TaskAbortedError(PatchPilotError):
    """The task was cancelled by the user."""


class McpServerError(PatchPilotError):
    """Target tool/resource server is unknown or disabled."""


class FileAccessError(PatchPilotError):
    """File system collaborator failures (missing file, path outside the workspace)."""
