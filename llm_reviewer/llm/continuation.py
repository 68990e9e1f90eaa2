"""
Continuation coordinator — turns length-truncated replies into one logical
response by issuing follow-up turns.

The pipeline is a chain of generators (HTTP chunks -> SSE decoder ->
coordinator -> consumer) running on the caller's thread.  Every ``next()`` is
a suspension point where cancellation and the query deadline are checked.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Iterator, List, Optional

from ..cli_display import log, token_tracker
from ..errors import ProviderError, ProviderErrorKind, QueryTimeoutError
from .base import LLMClient, Message, StreamItem, StreamResult

CONTINUATION_PROMPT = "Please continue where you left off."
DEFAULT_QUERY_TIMEOUT = 1800.0
DEFAULT_MAX_CONTINUATIONS = 10


class CancellationToken:
    """Thread-safe flag a consumer sets to abandon a query."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _QueryState:
    def __init__(self):
        self.turns = 0
        self.stop_reason: Optional[str] = None
        self.input_tokens: Optional[int] = None
        self.output_tokens: Optional[int] = None
        self.cancelled = False


class ContinuationCoordinator:
    """Drive one logical query across as many turns as the model needs."""

    def __init__(self, client: LLMClient, timeout: float = DEFAULT_QUERY_TIMEOUT,
                 max_continuations: int = DEFAULT_MAX_CONTINUATIONS,
                 rate_limiter=None, tracker=None,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.timeout = timeout
        self.max_continuations = max_continuations
        self.rate_limiter = rate_limiter
        self.tracker = tracker if tracker is not None else token_tracker
        self._clock = clock

    def stream(self, system: str, user: str,
               cancel_token: Optional[CancellationToken] = None) -> Iterator[StreamItem]:
        """Yield content items in order, then exactly one complete item.

        The complete item carries the last stop reason, the first turn's
        input tokens and the output tokens summed over all turns.  When the
        query is cancelled the iterator simply ends without a complete item.

        Raises
        ------
        QueryTimeoutError
            When the deadline expires.
        ProviderError
            The first hard error from any turn.
        """
        return self._stream(system, user, cancel_token, _QueryState())

    def run(self, system: str, user: str,
            on_token: Optional[Callable[[str], None]] = None,
            cancel_token: Optional[CancellationToken] = None) -> StreamResult:
        """Collect the whole logical reply."""
        state = _QueryState()
        parts: List[str] = []
        for item in self._stream(system, user, cancel_token, state):
            if item.is_complete:
                continue
            parts.append(item.content)
            if on_token:
                on_token(item.content)
        return StreamResult(
            content="".join(parts),
            stop_reason=state.stop_reason,
            input_tokens=state.input_tokens,
            output_tokens=state.output_tokens,
            turns=state.turns,
            cancelled=state.cancelled,
        )

    # ── Internals ──

    def _stream(self, system: str, user: str,
                cancel_token: Optional[CancellationToken],
                state: _QueryState) -> Iterator[StreamItem]:
        deadline = self._clock() + self.timeout
        base = [Message("system", system)] if system else []
        base.append(Message("user", user))
        messages = list(base)
        accumulated: List[str] = []
        tag = f"[{self.client.provider_name}]"

        while True:
            if self._cancelled(cancel_token, state):
                return
            self._check_deadline(deadline)
            if self.rate_limiter is not None:
                self.rate_limiter.acquire()

            state.turns += 1
            log.debug(f"{tag} Turn {state.turns}: sending {len(messages)} message(s)")
            completed, turn_output = yield from self._turn(
                messages, deadline, cancel_token, state, accumulated,
            )
            if completed is None:
                return      # cancelled mid-turn

            if turn_output is not None:
                state.output_tokens = (state.output_tokens or 0) + turn_output
            state.stop_reason = completed.stop_reason

            if completed.stop_reason != "length":
                break
            if state.turns > self.max_continuations:
                log.warning(f"{tag} Reply still truncated after "
                            f"{self.max_continuations} continuation(s); giving up")
                break

            log.info(f"{tag} Reply truncated at turn {state.turns}; requesting continuation")
            messages = base + [
                Message("assistant", "".join(accumulated)),
                Message("user", CONTINUATION_PROMPT),
            ]

        self.tracker.record(state.input_tokens or 0, state.output_tokens or 0,
                            model_name=self.client.model)
        log.debug(f"{tag} Query finished after {state.turns} turn(s): "
                  f"stop={state.stop_reason} in={state.input_tokens} "
                  f"out={state.output_tokens}")
        yield StreamItem(
            is_complete=True,
            stop_reason=state.stop_reason,
            input_tokens=state.input_tokens,
            output_tokens=state.output_tokens,
        )

    def _turn(self, messages, deadline, cancel_token, state, accumulated):
        """Stream one turn; returns ``(complete_item, output_tokens)`` or
        ``(None, None)`` when cancelled."""
        items = self.client.stream(messages, timeout=deadline - self._clock())
        turn_output = None
        try:
            for item in items:
                if self._cancelled(cancel_token, state):
                    return None, None
                self._check_deadline(deadline)
                if state.turns == 1 and item.input_tokens is not None:
                    state.input_tokens = item.input_tokens
                if item.output_tokens is not None:
                    turn_output = item.output_tokens
                if item.content:
                    accumulated.append(item.content)
                    yield StreamItem(content=item.content)
                if item.is_complete:
                    return item, turn_output
        except ProviderError as exc:
            self._raise_timeout_for(exc, deadline)
            raise
        finally:
            close = getattr(items, "close", None)
            if close is not None:
                close()

        raise ProviderError(ProviderErrorKind.NETWORK,
                            "Stream ended before the reply completed")

    def _cancelled(self, cancel_token, state) -> bool:
        if cancel_token is not None and cancel_token.cancelled:
            if not state.cancelled:
                log.info(f"[{self.client.provider_name}] Query cancelled")
            state.cancelled = True
        return state.cancelled

    def _check_deadline(self, deadline: float) -> None:
        if self._clock() >= deadline:
            raise QueryTimeoutError(f"Query exceeded {self.timeout:.0f}s deadline")

    def _raise_timeout_for(self, exc: ProviderError, deadline: float) -> None:
        # A network timeout at the deadline is the deadline, not the network.
        if exc.kind == ProviderErrorKind.NETWORK and self._clock() >= deadline:
            raise QueryTimeoutError(
                f"Query exceeded {self.timeout:.0f}s deadline") from exc
