"""Per-room pending-deletion timers.

A room that loses its last live connection gets one pending deletion,
keyed by room id. Scheduling again replaces the entry; cancelling pops it.
A task only fires if its token is still the room's current entry when the
delay has elapsed, so replaced or cancelled tasks wake up and do nothing.
"""

import itertools
import threading
import time
from typing import Callable, Dict, Optional

DeletionCallback = Callable[[str], None]


class PendingDeletions:

    def __init__(self, spawn: Optional[Callable] = None, sleep: Optional[Callable[[float], None]] = None):
        self.spawn = spawn or _spawn_thread
        self.sleep = sleep or time.sleep
        self._lock = threading.Lock()
        self._pending: Dict[str, int] = {}
        self._tokens = itertools.count(1)

    def schedule(self, room_id: str, delay: float, callback: DeletionCallback) -> int:
        """Schedule ``callback(room_id)`` after ``delay`` seconds, replacing any pending entry."""
        with self._lock:
            token = next(self._tokens)
            self._pending[room_id] = token
        self.spawn(self._run, room_id, token, delay, callback)
        return token

    def cancel(self, room_id: str) -> bool:
        """Drop the pending entry for ``room_id``; returns False when there was none."""
        with self._lock:
            return self._pending.pop(room_id, None) is not None

    def is_pending(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._pending

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def _claim(self, room_id: str, token: int) -> bool:
        with self._lock:
            if self._pending.get(room_id) != token:
                return False
            del self._pending[room_id]
            return True

    def _run(self, room_id: str, token: int, delay: float, callback: DeletionCallback) -> None:
        if delay > 0:
            self.sleep(delay)
        if self._claim(room_id, token):
            callback(room_id)


def _spawn_thread(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread
