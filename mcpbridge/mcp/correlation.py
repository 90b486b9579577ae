"""Pending-request table: matches JSON-RPC replies to requests and times them out."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from mcpbridge.mcp.errors import PeerError, RequestTimeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass
class PendingRequest:
    """A request waiting for its reply."""

    id: int
    timeout: float
    future: Future = field(default_factory=Future)
    created_at: float = field(default_factory=time.monotonic)
    timer: Optional[threading.Timer] = None


class CorrelationTable:
    """
    Outstanding requests keyed by id.

    Whichever comes first, the reply (``complete``) or the timer, removes the
    entry under the lock and settles the future. The other one then finds
    nothing and does nothing.
    """

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT):
        self.default_timeout = default_timeout
        self._pending: Dict[int, PendingRequest] = {}
        self._lock = threading.Lock()

    def register(self, request_id: int, timeout: Optional[float] = None) -> Future:
        """Track ``request_id`` and return the future its reply will settle."""
        timeout = self.default_timeout if timeout is None else timeout
        entry = PendingRequest(id=request_id, timeout=timeout)
        entry.timer = threading.Timer(timeout, self._expire, args=(request_id,))
        entry.timer.daemon = True
        with self._lock:
            if request_id in self._pending:
                raise ValueError(f"Request id {request_id} is already pending")
            self._pending[request_id] = entry
        entry.timer.start()
        return entry.future

    def complete(self, request_id: Any, is_error: bool, payload: Any) -> bool:
        """
        Settle the pending request for ``request_id``.

        Returns False when no such request is pending (late, duplicate or
        never registered); the reply is dropped.
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug("Discarding reply for unknown or expired request id %r", request_id)
            return False
        entry.timer.cancel()
        if is_error:
            entry.future.set_exception(PeerError.from_payload(payload))
        else:
            entry.future.set_result(payload)
        return True

    def discard(self, request_id: int) -> None:
        """Forget a request without settling it (the send itself failed)."""
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is not None:
            entry.timer.cancel()

    def fail_all(self, exc: BaseException) -> int:
        """Reject every pending request with ``exc``; returns how many."""
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
        for entry in entries:
            entry.timer.cancel()
            entry.future.set_exception(exc)
        return len(entries)

    def _expire(self, request_id: int) -> None:
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            return
        logger.warning("Request %s timed out after %gs", request_id, entry.timeout)
        entry.future.set_exception(RequestTimeout(request_id, entry.timeout))

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._pending
