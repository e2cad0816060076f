class GatewayError(Exception):
    """Base error raised by payment gateway clients."""

    def __init__(self, message: str, *, provider: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class GatewayConfigError(GatewayError):
    """Credentials or endpoints are missing; nothing was sent upstream."""


class GatewayNotFoundError(GatewayError):
    """The gateway answered 404 for the requested reference."""


class UpstreamVerificationError(GatewayError):
    """Timeout, transport failure or unusable response; the caller should retry later."""
