import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, List, Optional

import requests

from ..cli_display import log
from ..errors import ProviderError, ProviderErrorKind, QueryTimeoutError


@dataclass(frozen=True)
class StreamItem:
    """One decoded increment of a streamed reply."""
    content: str = ""
    is_complete: bool = False
    stop_reason: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


@dataclass(frozen=True)
class Message:
    role: str       # "system", "user" or "assistant"
    content: str


@dataclass
class StreamResult:
    """A collected logical reply, possibly spanning several turns."""
    content: str
    stop_reason: Optional[str]
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    turns: int = 1
    cancelled: bool = False


_shared_session: Optional[requests.Session] = None


def shared_session() -> requests.Session:
    """Process-wide HTTP session so connections are pooled across clients."""
    global _shared_session
    if _shared_session is None:
        _shared_session = requests.Session()
    return _shared_session


def split_system(messages: List[Message]) -> tuple[str, List[Message]]:
    """Separate system text from the conversation turns."""
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    return system, [m for m in messages if m.role != "system"]


def error_message(response: requests.Response) -> str:
    """Best-effort human readable message from an error response body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500] or response.reason or ""
    if isinstance(data, dict):
        err = data.get("error", data)
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
    return str(data)[:500]


def status_error(status_code: int, message: str) -> ProviderError:
    if status_code in (401, 403):
        kind = ProviderErrorKind.AUTH
    elif status_code == 429:
        kind = ProviderErrorKind.RATE_LIMITED
    else:
        kind = ProviderErrorKind.API_ERROR
    return ProviderError(kind, f"HTTP {status_code}: {message}", status_code=status_code)


class LLMClient(ABC):
    """Streaming chat client for one provider.

    Subclasses describe the request (URL, headers, JSON body) and name the
    dialect that decodes the provider's SSE events; transport, retries and
    status mapping live here.
    """

    provider_name = "LLM"

    def __init__(self, base_url: str, model: str, api_key: str,
                 max_tokens: int = 8192, temperature: Optional[float] = None,
                 max_retries: int = 3, retry_delay: float = 2.0,
                 connect_timeout: float = 10.0, read_timeout: float = 300.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.session = session or shared_session()

    # ── Subclass hooks ──

    @abstractmethod
    def _build_request(self, messages: List[Message]) -> tuple[str, dict, dict]:
        """Return ``(url, headers, payload)`` for a streaming request."""

    @abstractmethod
    def new_dialect(self):
        """Return a fresh dialect instance for decoding one stream."""

    # ── Public entry points ──

    def stream(self, messages: List[Message],
               timeout: Optional[float] = None) -> Iterator[StreamItem]:
        """Stream one reply as :class:`StreamItem` objects.

        The sequence ends after the first complete item (or when the server
        ends the stream).  Closing the iterator closes the HTTP response.
        """
        from .sse import iter_stream_items

        response = self.open_stream(messages, timeout=timeout)
        try:
            yield from iter_stream_items(self._iter_chunks(response), self.new_dialect())
        finally:
            response.close()

    def open_stream(self, messages: List[Message],
                    timeout: Optional[float] = None) -> requests.Response:
        """Open the streaming HTTP response, retrying transient failures with
        jittered exponential backoff.

        ``timeout`` bounds the whole attempt sequence; every request's read
        timeout is capped at the time remaining.
        """
        url, headers, payload = self._build_request(messages)
        headers = {**headers, "Accept": "text/event-stream"}
        deadline = time.monotonic() + timeout if timeout is not None else None
        log.debug(f"[{self.provider_name}] POST {url} ({len(messages)} message(s))")

        for attempt in range(1, self.max_retries + 1):
            read_timeout = self.read_timeout
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise QueryTimeoutError("Deadline expired before the request was sent")
                read_timeout = min(read_timeout, remaining)
            try:
                return self._post(url, headers, payload, read_timeout)
            except ProviderError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                log.warning(
                    f"[{self.provider_name}] Error on attempt {attempt}/{self.max_retries}: {e}")

                wait = self.retry_delay * (2 ** (attempt - 1))
                jitter = wait * 0.1 * random.random()
                # Rate limits back off twice as long
                if e.kind == ProviderErrorKind.RATE_LIMITED:
                    wait *= 2
                    log.info(f"[{self.provider_name}] Rate limit detected (429). "
                             f"Backing off for {wait:.1f}s")
                if deadline is not None and time.monotonic() + wait + jitter >= deadline:
                    raise QueryTimeoutError(
                        f"Deadline would expire while retrying: {e}") from e
                time.sleep(wait + jitter)

        raise AssertionError("unreachable")

    # ── Transport ──

    def _post(self, url: str, headers: dict, payload: dict,
              read_timeout: float) -> requests.Response:
        try:
            response = self.session.post(
                url, headers=headers, json=payload, stream=True,
                timeout=(min(self.connect_timeout, read_timeout), read_timeout),
            )
        except requests.exceptions.RequestException as e:
            raise ProviderError(ProviderErrorKind.NETWORK, str(e)) from e

        if not 200 <= response.status_code < 300:
            try:
                raise status_error(response.status_code, error_message(response))
            finally:
                response.close()
        return response

    def _iter_chunks(self, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except requests.exceptions.RequestException as e:
            raise ProviderError(ProviderErrorKind.NETWORK,
                                f"Stream interrupted: {e}") from e
