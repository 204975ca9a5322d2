from .client import Result, get, post
from .errors import ConstructionError, HTTPRequestError, RequestTimeout, TransportError

__all__ = [
    "ConstructionError",
    "HTTPRequestError",
    "RequestTimeout",
    "Result",
    "TransportError",
    "get",
    "post",
]
