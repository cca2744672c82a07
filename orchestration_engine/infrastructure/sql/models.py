#orchestration_engine\infrastructure\sql\models.py
"""SQLAlchemy ORM models for database tables."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text, Index

from orchestration_engine.infrastructure.sql.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRecordORM(Base):
    """
    State records table - one JSON document per key.

    Keys used by the orchestrator:
    - module-registry
    - topology-snapshot
    - resource-allocation
    - daemon-config
    - daemon-state
    """

    __tablename__ = "state_records"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<StateRecord(key={self.key}, updated_at={self.updated_at})>"


class MailboxMessageORM(Base):
    """
    Mailbox messages table - bounded FIFO per channel.

    Indexes:
    - Composite index on (channel_id, message_id) for oldest-first reads
    """

    __tablename__ = "mailbox_messages"

    message_id = Column(Integer, primary_key=True, autoincrement=True)
    channel_id = Column(Integer, nullable=False)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_mailbox_channel_message", "channel_id", "message_id"),
    )

    def __repr__(self):
        return f"<MailboxMessage(id={self.message_id}, channel={self.channel_id})>"
