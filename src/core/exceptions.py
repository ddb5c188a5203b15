class DomainError(Exception):
    """Base class for domain-specific errors."""

    pass


class ConversationNotFoundError(DomainError):
    """Exception raised when a conversation does not exist."""

    pass


class MessagePersistenceError(DomainError):
    """The user's own message could not be stored; nothing was sent."""

    user_message = "Sorry, I couldn't record your message. Please try again."


class OutcomePersistenceError(DomainError):
    """Neither the reply nor a failure explanation could be stored."""

    user_message = (
        "Sorry, the request failed and we couldn't log the result. "
        "Please refresh the conversation."
    )


class AutomationError(DomainError):
    """Base class for failures of one automation exchange.

    ``user_message`` is the readable explanation persisted in place of the
    assistant reply; ``str(exc)`` holds the technical detail.
    """

    user_message_template = "Sorry, something went wrong while answering: {detail}"

    @property
    def user_message(self) -> str:
        detail = str(self).strip() or self.__class__.__name__
        return self.user_message_template.format(detail=detail)


class AutomationNotConfiguredError(AutomationError):
    """No automation endpoint is configured."""

    user_message_template = "Sorry, I couldn't reach the automation service: {detail}"


class AutomationTransportError(AutomationError):
    """Non-success HTTP status or a network failure talking to the webhook."""

    user_message_template = "Sorry, I couldn't reach the automation service: {detail}"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamReportedError(AutomationError):
    """The event stream carried an explicit ``error`` event."""

    user_message_template = "Sorry, the automation workflow reported an error: {detail}"


class EmptyStreamError(AutomationError):
    """The event stream finished without any reply content."""

    user_message_template = "Sorry, the automation stream ended without a message."

    def __init__(self, message: str = "stream ended without a message") -> None:
        super().__init__(message)


class PayloadNormalizationError(AutomationError):
    """A response body did not match the canonical reply shape."""

    user_message_template = (
        "Sorry, I couldn't understand the automation service's response: {detail}"
    )


class ExchangeCancelledError(AutomationError):
    """The caller abandoned the exchange before it finished."""

    user_message_template = "The response was cancelled before it finished."

    def __init__(self, message: str = "exchange cancelled") -> None:
        super().__init__(message)
