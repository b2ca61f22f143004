"""Error taxonomy shared by the CLI, the API and the core services."""


class PromptOptimizerError(Exception):
    """Base class for every error raised by the core layer."""

    # HTTP status used by the API exception handler
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConfigurationError(PromptOptimizerError):
    """Unknown model key or missing provider credential."""
    status_code = 500


class UpstreamError(PromptOptimizerError):
    """The provider answered with a non-2xx status or the connection failed."""
    status_code = 502


class LlmTimeoutError(PromptOptimizerError, TimeoutError):
    """The provider did not answer before the configured deadline."""
    status_code = 504


class ProtocolError(PromptOptimizerError):
    """The provider answered, but not in the expected shape."""
    status_code = 502


class NotFoundError(PromptOptimizerError):
    """Missing input file, scene directory, prompt version or task."""
    status_code = 404


class ValidationError(PromptOptimizerError):
    """Missing or malformed CLI / API input."""
    status_code = 400


class ConflictError(PromptOptimizerError):
    """A concurrent writer claimed the same prompt version twice in a row."""
    status_code = 409


class StorageLockTimeout(PromptOptimizerError):
    """The advisory lock on a file could not be acquired in time."""
    status_code = 503


class CorruptFileError(PromptOptimizerError):
    """A stored file (e.g. the prompt index) exists but cannot be parsed."""
    status_code = 500
