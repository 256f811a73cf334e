"""Custom exception types for the mail triage pipeline.

Error messages state what failed, where, and why, and where possible how
to fix it. Only configuration errors are meant to reach the user; every
other error is caught by the classifier and degrades to the rule-based
result.
"""


class TriageError(Exception):
    """Base exception for all mail triage errors."""

    pass


class ConfigValidationError(TriageError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(TriageError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class CompletionError(TriageError):
    """Raised when the language-model completion endpoint fails.

    Covers non-2xx responses, network failures and timeouts. Not retried.

    Attributes:
        status_code: HTTP status code from the provider (None for network errors)
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(CompletionError):
    """Raised when the provider answers HTTP 429.

    The completion client retries these with exponential backoff and only
    propagates one after the attempt budget is spent.
    """

    def __init__(self, message: str):
        super().__init__(message, status_code=429)


class ResponseParseError(TriageError):
    """Raised when model output does not contain a recoverable JSON object.

    Attributes:
        raw_text: The (truncated) model output that failed to parse
    """

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text[:500]


class ClassificationError(TriageError):
    """Raised when the AI classification path fails.

    Always caught inside EmailClassifier.classify(), which falls back to
    the rule engine.

    Attributes:
        message_id: Provider message ID that failed classification
        attempts: Number of completion attempts allowed
    """

    def __init__(self, message: str, message_id: str | None = None, attempts: int = 0):
        super().__init__(message)
        self.message_id = message_id
        self.attempts = attempts


class NormalizationError(TriageError):
    """Raised when body normalization fails (e.g., regex timeout).

    This is a non-fatal error - processing continues with the raw text
    truncated to the length bound. Used for logging rather than halting.

    Attributes:
        step: Which normalization step failed
        partial_result: The text normalized up to the failure point
    """

    def __init__(self, message: str, step: str, partial_result: str):
        super().__init__(message)
        self.step = step
        self.partial_result = partial_result


class RateLimitExceeded(TriageError):
    """Raised when the scheduler would require an excessive wait.

    The interval scheduler refuses to block longer than its configured
    maximum wait rather than hanging indefinitely.
    """

    pass
