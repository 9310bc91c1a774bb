"""Exception hierarchy for the ceremony calendar and reminder engine.

Every error raised on purpose by ceremonybot derives from ``CeremonyBotError``
so callers (HTTP routes, the CLI, the scheduler loop) can catch the whole
family in one place and map individual types to responses.
"""


class CeremonyBotError(Exception):
    """Base exception for all ceremonybot errors."""


class ConfigurationError(CeremonyBotError):
    """Invalid configuration of a model or pattern.

    Raised when:
    - A recurrence pattern has interval <= 0
    - A recurrence pattern sets both end_date and occurrences
    - day_of_month is outside 1..31
    - An event has zero or negative duration

    Not a ValueError subclass, so pydantic validators propagate it unwrapped
    rather than folding it into a ValidationError.
    """


class StoreUnavailable(CeremonyBotError):
    """The durable event/reminder store could not be read or written.

    Should result in HTTP 503 Service Unavailable response.
    """


class NotificationNotFound(CeremonyBotError):
    """No notification exists with the requested id.

    Should result in HTTP 404 Not Found response.
    """


class UnknownActionError(CeremonyBotError):
    """A notification action outside the closed action set was requested."""


class DispatchError(CeremonyBotError):
    """A dispatch sink failed to deliver a notification.

    Never propagates into the scheduler loop; sinks raise it and the scheduler
    logs and swallows it.
    """
