class DomainError(Exception):
    """Base class for domain-specific errors."""

    pass


class FeedbackPromptClosedError(DomainError):
    """Raised when a feedback prompt receives a second submission."""

    pass
