"""Domain exceptions shared across the service."""


class SpeakSmartError(Exception):
    """Base class for errors the service knows how to surface."""


class UserInputError(SpeakSmartError):
    """Empty or malformed input; shown inline, never retried."""


class AuthError(SpeakSmartError):
    """Bad credentials or identity provider failure."""

    def __init__(self, message: str = "Failed to sign in. Please check your credentials.",
                 code: str | None = None):
        super().__init__(message)
        self.code = code


class DailyLimitReached(SpeakSmartError):
    """Both attempts for an activity are used up for today."""

    def __init__(self, activity_id: str, date_key: str):
        super().__init__("You have reached the daily limit. Try again tomorrow.")
        self.activity_id = activity_id
        self.date_key = date_key


class StoreUnavailableError(SpeakSmartError):
    """The backing document store could not be reached."""


class DocumentNotFoundError(SpeakSmartError):
    """An update targeted a document that does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Document not found: {path}")
        self.path = path


class QuotaOrRateLimitError(SpeakSmartError):
    """An AI provider answered with a rate-limit or quota signal."""


class GenerationFailed(SpeakSmartError):
    """An AI provider failed for a reason other than rate limiting."""


class GenerationFormatError(GenerationFailed):
    """Provider output could not be parsed into the expected shape."""


class ConfirmationRequired(SpeakSmartError):
    """A destructive admin action was invoked without confirmation."""
