"""In-process mailbox."""

from collections import deque
from threading import Lock
from typing import Deque, Dict, Optional

from orchestration_engine.mailbox.base import DEFAULT_CHANNEL_CAPACITY, Mailbox


class InMemoryMailbox(Mailbox):
    """Mailbox for modules living in the same process (threads, tests)."""

    def __init__(self, capacity: int = DEFAULT_CHANNEL_CAPACITY):
        super().__init__(capacity)
        self._channels: Dict[int, Deque[str]] = {}
        self._lock = Lock()

    def _channel(self, channel_id: int) -> Deque[str]:
        return self._channels.setdefault(channel_id, deque())

    def _push(self, channel_id: int, raw: str) -> bool:
        with self._lock:
            channel = self._channel(channel_id)
            if len(channel) >= self.capacity:
                channel.clear()
            channel.append(raw)
        return True

    def _pop(self, channel_id: int) -> Optional[str]:
        with self._lock:
            channel = self._channel(channel_id)
            if not channel:
                return None
            return channel.popleft()

    def _size(self, channel_id: int) -> int:
        with self._lock:
            return len(self._channel(channel_id))

    def _clear(self, channel_id: int) -> None:
        with self._lock:
            self._channel(channel_id).clear()
