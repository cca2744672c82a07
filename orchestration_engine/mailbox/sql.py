"""Database-backed mailbox shared by the daemon and module processes."""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from orchestration_engine.infrastructure.sql.database import SessionLocal
from orchestration_engine.infrastructure.sql.models import MailboxMessageORM
from orchestration_engine.mailbox.base import DEFAULT_CHANNEL_CAPACITY, Mailbox

logger = logging.getLogger(__name__)


class SqlMailbox(Mailbox):
    """
    Mailbox on the mailbox_messages table.

    Processes on the same host share channels by pointing at the same
    database file.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        capacity: int = DEFAULT_CHANNEL_CAPACITY,
    ):
        super().__init__(capacity)
        self._session_factory = session_factory or SessionLocal

    def _get_session(self):
        return self._session_factory()

    def _channel_query(self, session, channel_id: int):
        return session.query(MailboxMessageORM).filter(
            MailboxMessageORM.channel_id == channel_id
        )

    def _push(self, channel_id: int, raw: str) -> bool:
        session = self._get_session()
        try:
            count = session.query(func.count(MailboxMessageORM.message_id)).filter(
                MailboxMessageORM.channel_id == channel_id
            ).scalar()

            if count >= self.capacity:
                self._channel_query(session, channel_id).delete(synchronize_session=False)

            session.add(MailboxMessageORM(channel_id=channel_id, payload=raw))
            session.commit()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[mailbox] Failed to write to channel {channel_id}: {e}")
            return False
        finally:
            session.close()

    def _pop(self, channel_id: int) -> Optional[str]:
        session = self._get_session()
        try:
            orm = self._channel_query(session, channel_id).order_by(
                MailboxMessageORM.message_id.asc()
            ).first()
            if orm is None:
                return None

            payload = orm.payload
            session.delete(orm)
            session.commit()
            return payload
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[mailbox] Failed to read from channel {channel_id}: {e}")
            return None
        finally:
            session.close()

    def _size(self, channel_id: int) -> int:
        session = self._get_session()
        try:
            return session.query(func.count(MailboxMessageORM.message_id)).filter(
                MailboxMessageORM.channel_id == channel_id
            ).scalar() or 0
        except SQLAlchemyError as e:
            logger.error(f"[mailbox] Failed to inspect channel {channel_id}: {e}")
            return 0
        finally:
            session.close()

    def _clear(self, channel_id: int) -> None:
        session = self._get_session()
        try:
            self._channel_query(session, channel_id).delete(synchronize_session=False)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[mailbox] Failed to clear channel {channel_id}: {e}")
        finally:
            session.close()
