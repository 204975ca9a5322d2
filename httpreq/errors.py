from __future__ import annotations


class HTTPRequestError(RuntimeError):
    """Base class for failures of a single request/response cycle."""

    def __init__(self, message: str, method: str, url: str) -> None:
        super().__init__(message)
        self.method = method
        self.url = url


class ConstructionError(HTTPRequestError):
    """Raised when the request cannot be built; nothing was sent."""


class TransportError(HTTPRequestError):
    """Raised when the network exchange itself fails."""


class RequestTimeout(TransportError):
    """Raised when the connect or read timeout elapses."""


__all__ = [
    "ConstructionError",
    "HTTPRequestError",
    "RequestTimeout",
    "TransportError",
]
