"""
Case change triggers.

Hooks run by CaseRepository after a write has committed. They use their own
session, so a failing trigger never undoes the write that fired it.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db.models import ActivityLog
from .schemas import CaseRecord

logger = logging.getLogger(__name__)

CASE_CREATED = "case_created"


class ActivityLogTrigger:
    """Append a "case_created" entry to the activity log for each new case."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def __call__(self, record: CaseRecord) -> bool:
        logger.info(f"New case created: case_id={record.id} user_id={record.user_id}")

        db = self._session_factory()
        try:
            db.add(ActivityLog(
                action=CASE_CREATED,
                case_id=record.id,
                user_id=record.user_id,
                timestamp=datetime.utcnow(),
            ))
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error in case-created trigger for {record.id}: {e}")
            return False
        finally:
            db.close()
