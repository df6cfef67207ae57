"""Cooperative cancellation tokens.

A token is a hint an operation may poll or subscribe to. Nothing in the
toolkit forcibly stops work that ignores it.

Example:
    token = CancellationToken()

    async def fetch():
        while not token.is_cancelled:
            await read_chunk()

    await with_timeout(fetch, 5.0, cancel_token=token)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable
from typing import Any

from animus_resilience.errors import OperationCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Single-shot cancellation signal with parent-child propagation."""

    def __init__(self, *, parent: CancellationToken | None = None):
        self._id = uuid.uuid4().hex[:12]
        self._cancelled = False
        self._reason: str | None = None
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[CancellationToken], Any]] = []
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()
        self._parent = parent

        if parent is not None:
            parent._children.add(self)
            if parent.is_cancelled:
                self.cancel(parent.reason or "parent already cancelled")

    @property
    def id(self) -> str:
        return self._id

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def parent(self) -> CancellationToken | None:
        return self._parent

    def cancel(self, reason: str | None = None) -> bool:
        """Signal cancellation.

        Returns:
            True if this call cancelled the token, False if it already was.
        """
        if self._cancelled:
            return False

        self._cancelled = True
        self._reason = reason
        self._event.set()
        logger.debug("Cancellation token %s cancelled: %s", self._id, reason)

        for callback in list(self._callbacks):
            self._run_callback(callback)
        self._callbacks.clear()

        for child in list(self._children):
            child.cancel(reason)
        return True

    def on_cancel(self, callback: Callable[[CancellationToken], Any]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._cancelled:
            self._run_callback(callback)
        else:
            self._callbacks.append(callback)

    def create_child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(self._reason, token_id=self._id)

    def _run_callback(self, callback: Callable[[CancellationToken], Any]) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception("Cancellation callback failed for token %s", self._id)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"CancellationToken(id={self._id!r}, {state})"
