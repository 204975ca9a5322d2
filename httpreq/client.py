from __future__ import annotations

import io
import json
import socket
import threading
import time
from datetime import timedelta
from typing import Any, Mapping, NamedTuple, Optional, Union

import requests
from loguru import logger
from requests.structures import CaseInsensitiveDict
from urllib3.exceptions import HTTPError, ReadTimeoutError

from .config import settings
from .errors import ConstructionError, HTTPRequestError, RequestTimeout, TransportError

Timeout = Union[int, float, timedelta, None]
Body = Union[str, bytes, bytearray]

_NO_STATUS = -1


class Result(NamedTuple):
    """Outcome of one request/response cycle.

    Unpacks as ``status_code, body, headers, error``. On failure ``body`` and
    ``headers`` are ``None`` and ``status_code`` is ``-1`` unless a response
    had already arrived. HTTP error statuses are not failures.
    """

    status_code: int
    body: Optional[io.BytesIO]
    headers: Optional[CaseInsensitiveDict]
    error: Optional[HTTPRequestError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def content(self) -> bytes:
        if self.body is None:
            return b""
        return self.body.getvalue()

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def get(
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    timeout: Timeout = None,
) -> Result:
    """Issue a GET request and return the fully buffered result.

    ``timeout`` is in seconds (or a ``timedelta``); ``0`` disables it and
    ``None`` falls back to ``settings.HTTP_TIMEOUT_SEC``.
    """

    return _execute("GET", url, headers, timeout)


def post(
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    data: Body = "",
    timeout: Timeout = None,
) -> Result:
    """Issue a POST request with ``data`` as the raw payload.

    Text is sent UTF-8 encoded; bytes are sent unchanged.
    """

    return _execute("POST", url, headers, timeout, body=data)


def _execute(
    method: str,
    url: str,
    headers: Optional[Mapping[str, str]],
    timeout: Timeout,
    body: Optional[Body] = None,
) -> Result:
    with requests.Session() as session:
        # no proxies, netrc credentials or CA bundle overrides from the environment
        session.trust_env = False
        session.verify = True
        try:
            seconds = _timeout_seconds(timeout)
            payload = _encode_body(body) if body is not None else None
            request = requests.Request(method, url, headers=dict(headers or {}), data=payload)
            prepared = session.prepare_request(request)
            _check_scheme(session, prepared.url)
        except (TypeError, ValueError, requests.RequestException) as exc:
            return _failure(ConstructionError, method, url, exc)

        # a caller asking for an encoding gets the body exactly as sent
        decode = not any(name.lower() == "accept-encoding" for name in request.headers)

        start = time.perf_counter()
        try:
            response = session.send(prepared, timeout=seconds, verify=True, stream=True)
        except requests.RequestException as exc:
            return _failure(_transport_kind(exc), method, url, exc)

        with response:
            fired = threading.Event()
            watchdog = _arm_deadline(response, seconds - (time.perf_counter() - start), fired) if seconds else None
            buffer = io.BytesIO()
            try:
                for chunk in response.raw.stream(settings.HTTP_CHUNK_SIZE, decode_content=decode):
                    buffer.write(chunk)
                    if _expired(start, seconds):
                        break
            except (requests.RequestException, HTTPError) as exc:
                kind = RequestTimeout if fired.is_set() or _expired(start, seconds) else _transport_kind(exc)
                return _failure(kind, method, url, exc, status_code=response.status_code)
            finally:
                if watchdog is not None:
                    watchdog.cancel()
            if fired.is_set() or _expired(start, seconds):
                return _failure(
                    RequestTimeout,
                    method,
                    url,
                    message=f"response not received within {seconds}s",
                    status_code=response.status_code,
                )
            size = buffer.tell()
            buffer.seek(0)
            result = Result(response.status_code, buffer, _collect_headers(response, decode))

    duration = (time.perf_counter() - start) * 1000
    logger.debug(
        "HTTP {method} {url} status={status} bytes={size} duration_ms={duration:.1f}",
        method=method,
        url=url,
        status=result.status_code,
        size=size,
        duration=duration,
    )
    return result


def _check_scheme(session: requests.Session, url: str) -> None:
    """Raise ``InvalidSchema`` before sending when no adapter serves ``url``."""

    _ = session.get_adapter(url)


def _expired(start: float, seconds: Optional[float]) -> bool:
    return bool(seconds) and time.perf_counter() - start >= seconds


def _arm_deadline(
    response: requests.Response, remaining: float, fired: threading.Event
) -> Optional[threading.Timer]:
    """Shut the connection's socket down once ``remaining`` seconds pass.

    Socket timeouts apply per read, so a server trickling the body would
    otherwise hold the caller past the deadline. Mocked responses have no
    socket and get no watchdog.
    """

    connection = getattr(response.raw, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        return None
    watchdog = threading.Timer(max(remaining, 0.0), _abort, args=(sock, fired))
    watchdog.daemon = True
    watchdog.start()
    return watchdog


def _abort(sock: socket.socket, fired: threading.Event) -> None:
    fired.set()
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        # already closed by the reader
        logger.debug("socket shutdown skipped: {error}", error=exc)


def _timeout_seconds(timeout: Timeout) -> Optional[float]:
    if timeout is None:
        timeout = settings.HTTP_TIMEOUT_SEC
    if isinstance(timeout, timedelta):
        timeout = timeout.total_seconds()
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise TypeError(f"timeout must be a number of seconds, got {timeout!r}")
    if timeout < 0:
        raise ValueError(f"timeout must not be negative, got {timeout!r}")
    # requests treats None as "wait forever"
    return float(timeout) or None


def _encode_body(body: Body) -> bytes:
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray)):
        return bytes(body)
    raise TypeError(f"request body must be str or bytes, got {type(body).__name__}")


def _transport_kind(exc: BaseException) -> type[TransportError]:
    if isinstance(exc, (requests.Timeout, ReadTimeoutError)):
        return RequestTimeout
    # requests wraps a read timeout during streaming as ConnectionError(ReadTimeoutError)
    reason = exc.args[0] if exc.args else None
    if isinstance(reason, ReadTimeoutError):
        return RequestTimeout
    return TransportError


def _collect_headers(response: requests.Response, decoded: bool) -> CaseInsensitiveDict:
    collected: CaseInsensitiveDict = CaseInsensitiveDict()
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        for name in raw_headers:
            collected[name] = list(raw_headers.getlist(name))
    else:
        for name, value in response.headers.items():
            collected[name] = [value]
    if decoded and _was_decoded(response, collected):
        # the body no longer matches the encoding or length the server declared
        collected.pop("Content-Encoding", None)
        collected.pop("Content-Length", None)
    return collected


def _was_decoded(response: requests.Response, headers: CaseInsensitiveDict) -> bool:
    encodings = [
        part.strip().lower()
        for value in headers.get("Content-Encoding", [])
        for part in value.split(",")
        if part.strip()
    ]
    supported = getattr(response.raw, "CONTENT_DECODERS", ())
    return bool(encodings) and all(encoding in supported for encoding in encodings)


def _failure(
    kind: type[HTTPRequestError],
    method: str,
    url: str,
    cause: Optional[BaseException] = None,
    message: Optional[str] = None,
    status_code: int = _NO_STATUS,
) -> Result:
    error = kind(message or str(cause), method, url)
    error.__cause__ = cause
    if issubclass(kind, TransportError):
        logger.warning(
            "HTTP {method} {url} failed: {kind}: {error}",
            method=method,
            url=url,
            kind=kind.__name__,
            error=error,
        )
    else:
        logger.debug("HTTP {method} {url} not sent: {error}", method=method, url=url, error=error)
    return Result(status_code, None, None, error)
