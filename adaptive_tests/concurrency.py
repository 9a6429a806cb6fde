"""Cooperative cancellation and keyed single-flight execution."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Dict, Hashable, TypeVar

from .errors import DiscoveryCancelled

T = TypeVar("T")


class CancellationToken:
    """Caller-owned flag checked between directory steps and resolution attempts."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DiscoveryCancelled("Discovery was cancelled by the caller")


class SingleFlight:
    """Collapse concurrent calls for the same key onto one execution.

    The first caller for a key runs ``fn``; callers arriving while it is in
    flight wait for and share its result (or exception). Once finished the key
    is forgotten, so a later call runs ``fn`` again.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: Dict[Hashable, Future] = {}

    def run(self, key: Hashable, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._inflight.pop(key, None)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._inflight)


__all__ = ["CancellationToken", "SingleFlight"]
