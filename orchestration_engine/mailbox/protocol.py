"""Send and drain helpers on top of a Mailbox."""

import logging
from typing import Any, Dict, List

from pydantic import BaseModel, ValidationError

from orchestration_engine.mailbox.base import Mailbox
from orchestration_engine.mailbox.messages import (
    ControlMessage,
    StatusMessage,
    control_message_adapter,
    status_message_adapter,
)

logger = logging.getLogger(__name__)


def send_message(mailbox: Mailbox, channel_id: int, message: BaseModel) -> bool:
    return mailbox.send(channel_id, message.model_dump(mode="json"))


def drain(mailbox: Mailbox, channel_id: int) -> List[Dict[str, Any]]:
    """
    Receive everything currently queued on the channel, without blocking.

    Reads at most one channel's worth of messages; anything written while
    draining is picked up on the next call.
    """
    messages: List[Dict[str, Any]] = []
    for _ in range(mailbox.capacity):
        if not mailbox.has_pending(channel_id):
            break
        message = mailbox.try_receive(channel_id)
        if message is not None:
            messages.append(message)
    return messages


def drain_control(mailbox: Mailbox, channel_id: int) -> List[ControlMessage]:
    messages: List[ControlMessage] = []
    for raw in drain(mailbox, channel_id):
        try:
            messages.append(control_message_adapter.validate_python(raw))
        except ValidationError as e:
            logger.warning(f"[mailbox] Skipping malformed control message on channel {channel_id}: {e}")
    return messages


def drain_status(mailbox: Mailbox, channel_id: int) -> List[StatusMessage]:
    messages: List[StatusMessage] = []
    for raw in drain(mailbox, channel_id):
        try:
            messages.append(status_message_adapter.validate_python(raw))
        except ValidationError as e:
            logger.warning(f"[mailbox] Skipping malformed status message on channel {channel_id}: {e}")
    return messages
