"""
Error hierarchy for the interview runner.

Transient network failures never surface here: the completion client absorbs
them. What remains is terminal (CompletionError), content that never arrived
(ContentMissingError), unparsable model output (ExtractionError) and fatal
configuration problems (ConfigurationError).
"""


class AppError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Missing credential or malformed project configuration."""


class CompletionError(AppError):
    """A completion request failed for good: non-transient status or retries exhausted."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: str = "",
        model: str | None = None,
        attempts: int = 1,
    ):
        self.status = status
        self.body = body
        self.model = model
        self.attempts = attempts
        status_info = f" (status {status})" if status is not None else ""
        details = f" - {body}" if body else ""
        super().__init__(
            f"LLM request failed{status_info}: {message}{details}",
            {"status": status, "model": model, "attempts": attempts},
        )
        self.reason = message


class ContentMissingError(AppError):
    """The backend answered but never produced usable text within the attempt budget."""

    def __init__(self, label: str, attempts: int):
        self.label = label
        self.attempts = attempts
        super().__init__(f"{label} response missing after {attempts} attempts.", {"label": label})


class ExtractionError(AppError):
    """Model output did not contain a locatable or valid JSON payload."""
