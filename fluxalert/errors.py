"""Error types raised by the notifier."""


class FluxAlertError(Exception):
    """Base class for all notifier errors."""


class ConfigurationError(FluxAlertError):
    """Invalid notifier configuration, raised only during construction."""


class InvalidEndpointsError(ConfigurationError):
    """One or more endpoint URLs could not be parsed."""

    def __init__(self, invalid: list[tuple[str, str]]):
        self.invalid = list(invalid)
        details = "; ".join(f"{token!r}: {reason}" for token, reason in self.invalid)
        super().__init__(f"invalid alertmanager address: {details}")


class RelabelConfigError(ConfigurationError):
    """The relabel rule document is malformed."""


class DeliveryError(FluxAlertError):
    """Posting the alert payload to a single endpoint failed."""

    def __init__(self, url: str, cause: BaseException):
        self.url = url
        self.cause = cause
        super().__init__(f"{url}: {str(cause) or type(cause).__name__}")


class RelabelError(FluxAlertError):
    """The relabel strategy failed on a built label set."""


class AggregateError(FluxAlertError):
    """A collection of errors rendered in the order they were recorded."""

    prefix = ""

    def __init__(self, errors: list[Exception]):
        self.errors = list(errors)
        message = "; ".join(str(e) for e in self.errors)
        if self.prefix:
            message = f"{self.prefix}: {message}"
        super().__init__(message)

    def __len__(self) -> int:
        return len(self.errors)


class PostMessageError(AggregateError):
    """Delivery failed for at least one endpoint."""

    prefix = "postMessage failed"

    @property
    def urls(self) -> list[str]:
        return [e.url for e in self.errors if isinstance(e, DeliveryError)]
