"""Mailbox contract - numbered, bounded, single-reader channels."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_CAPACITY = 50
MAX_CHANNEL_ID = 64

# Channel numbering
DAEMON_CONTROL_CHANNEL = 1
DAEMON_STATUS_CHANNEL = 2
MODULE_CONTROL_BASE = 10
MODULE_STATUS_BASE = 30
MAX_MODULE_SLOTS = MODULE_STATUS_BASE - MODULE_CONTROL_BASE


def channels_for_slot(slot: int) -> Tuple[int, int]:
    """(control, status) channel ids for the module in the given slot."""
    if not 0 <= slot < MAX_MODULE_SLOTS:
        raise ValueError(f"Module slot must be in [0, {MAX_MODULE_SLOTS}), got {slot}")
    return MODULE_CONTROL_BASE + slot, MODULE_STATUS_BASE + slot


def validate_channel_id(channel_id: int) -> int:
    if not 1 <= channel_id <= MAX_CHANNEL_ID:
        raise ValueError(f"Channel id must be in [1, {MAX_CHANNEL_ID}], got {channel_id}")
    return channel_id


class Mailbox(ABC):
    """
    Bounded FIFO per channel with overwrite-on-full.

    When a sender finds the channel full, the channel is cleared and the new
    message is written anyway. Delivery is never guaranteed.
    """

    def __init__(self, capacity: int = DEFAULT_CHANNEL_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity

    # -------------------------
    # PUBLIC API
    # -------------------------

    def send(self, channel_id: int, message: Dict[str, Any]) -> bool:
        """Serialize message into an envelope and append it to the channel."""
        validate_channel_id(channel_id)
        envelope = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": message,
        }
        try:
            raw = json.dumps(envelope)
        except (TypeError, ValueError) as e:
            logger.error(f"[mailbox] Failed to serialize message for channel {channel_id}: {e}")
            return False
        return self._push(channel_id, raw)

    def try_receive(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """Pop the oldest message, or None if the channel is empty."""
        validate_channel_id(channel_id)
        raw = self._pop(channel_id)
        if raw is None:
            return None
        try:
            return json.loads(raw)["data"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"[mailbox] Dropping unreadable message on channel {channel_id}: {e}")
            return None

    def has_pending(self, channel_id: int) -> bool:
        validate_channel_id(channel_id)
        return self._size(channel_id) > 0

    def clear(self, channel_id: int) -> None:
        validate_channel_id(channel_id)
        self._clear(channel_id)

    # -------------------------
    # BACKEND HOOKS
    # -------------------------

    @abstractmethod
    def _push(self, channel_id: int, raw: str) -> bool:
        """Append raw, clearing the channel first when it is full."""
        raise NotImplementedError

    @abstractmethod
    def _pop(self, channel_id: int) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def _size(self, channel_id: int) -> int:
        raise NotImplementedError

    @abstractmethod
    def _clear(self, channel_id: int) -> None:
        raise NotImplementedError
