"""Cooperative cancellation for long-running scans."""

from __future__ import annotations

import threading

from codesift.core.errors import InvalidQueryError


class CancellationToken:
    """Set from any thread; checked by scanning loops between documents."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise InvalidQueryError.cancelled()
