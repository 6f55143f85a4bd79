"""Per-ticket exclusive locks shared by request handlers and the overdue sweeper."""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from app.config import settings
from app.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class TicketLockRegistry:
    """
    One lock per ticket id. Transitions on different tickets never wait on each other;
    transitions on the same ticket run one at a time.
    """

    def __init__(self, timeout_seconds: float = None):
        self.timeout_seconds = settings.lock_timeout_seconds if timeout_seconds is None else timeout_seconds
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, ticket_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(ticket_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[ticket_id] = lock
            return lock

    @contextmanager
    def hold(self, ticket_id: str) -> Iterator[None]:
        lock = self._lock_for(ticket_id)
        if not lock.acquire(timeout=self.timeout_seconds):
            logger.warning("Timed out waiting for lock on ticket %s", ticket_id)
            raise StoreUnavailable(
                f"Ticket {ticket_id} is busy with another transition; try again",
                details={"ticket_id": ticket_id},
            )
        try:
            yield
        finally:
            lock.release()

    def discard(self, ticket_id: str) -> None:
        """Forget the lock of a deleted ticket."""
        with self._registry_lock:
            self._locks.pop(ticket_id, None)


# Process-wide registry; the API and the sweeper must share it
ticket_locks = TicketLockRegistry()
