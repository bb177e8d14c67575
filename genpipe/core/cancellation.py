"""Cooperative cancellation shared between the orchestrator and its stages."""

import logging
import threading
from typing import Callable, List

from genpipe.core.errors import Canceled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancel flag with abort callbacks.

    Stages poll :attr:`cancelled` (or call :meth:`raise_if_cancelled`) at fixed
    checkpoints. Blocking operations register a callback to be aborted when
    :meth:`cancel` is called from another thread.

    Example:
        token = CancellationToken()
        unregister = token.register(response.close)
        try:
            ...
        finally:
            unregister()
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation and run registered abort callbacks once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        logger.info("Cancellation requested")
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Abort callback raised during cancellation: {e}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Canceled("Canceled")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True early if canceled meanwhile."""
        return self._event.wait(max(0.0, seconds))

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register an abort callback; returns a function that unregisters it.

        If the token is already canceled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                registered = True
            else:
                registered = False

        if not registered:
            callback()
            return lambda: None

        def unregister() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unregister

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"
