"""SQLAlchemy-backed state store."""

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from orchestration_engine.core.repository import StateStore
from orchestration_engine.infrastructure.sql.database import SessionLocal
from orchestration_engine.infrastructure.sql.models import StateRecordORM

logger = logging.getLogger(__name__)


class SqlStateStore(StateStore):
    """Key -> JSON document store on top of the state_records table."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    def _get_session(self):
        return self._session_factory()

    def read(self, key: str, default: Any = None) -> Any:
        session = self._get_session()
        try:
            orm = session.get(StateRecordORM, key)
            if orm is None or orm.value is None:
                return default
            return orm.value
        except SQLAlchemyError as e:
            logger.error(f"[store] Failed to read '{key}': {e}")
            return default
        finally:
            session.close()

    def write(self, key: str, value: Any) -> bool:
        session = self._get_session()
        try:
            orm = session.get(StateRecordORM, key)
            if orm is None:
                session.add(StateRecordORM(key=key, value=value))
            else:
                orm.value = value
            session.commit()
            return True
        except (SQLAlchemyError, TypeError, ValueError) as e:
            session.rollback()
            logger.error(f"[store] Failed to write '{key}': {e}")
            return False
        finally:
            session.close()
