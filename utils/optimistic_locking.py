"""
Conditional Update Infrastructure
Predicate-guarded single-statement updates to prevent race conditions.

A conditional update is one UPDATE whose WHERE clause carries the expected
current state. The database evaluates the predicate and applies the change
atomically, so the affected-row count tells the caller whether it won.
Never emulate this with a read followed by a write.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Type

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from models import Base

logger = logging.getLogger(__name__)


class ConditionalUpdateManager:
    """Executes compare-and-set updates inside a caller-owned session"""

    def __init__(self, session: Session):
        self.session = session

    def compare_and_set(
        self,
        model_class: Type[Base],
        entity_id: Any,
        predicates: Iterable[Any],
        updates: Dict[str, Any],
    ) -> bool:
        """
        Apply ``updates`` to the row only if every predicate still holds.

        Args:
            model_class: SQLAlchemy model class with an ``id`` primary key
            entity_id: Primary key value
            predicates: Extra SQL expressions describing the expected state
            updates: Column values to write

        Returns:
            bool: True if exactly one row changed, False if the predicate failed
        """
        values = dict(updates)
        if hasattr(model_class, "updated_at"):
            values.setdefault("updated_at", datetime.now(timezone.utc))

        stmt = (
            update(model_class)
            .where(model_class.id == entity_id, *predicates)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            result = self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"❌ Database error during conditional update of {model_class.__name__} {entity_id}: {e}")
            raise

        if result.rowcount == 0:
            logger.debug(f"🔒 Conditional update skipped: {model_class.__name__} id={entity_id} predicate no longer holds")
            return False

        logger.debug(f"✅ Conditional update applied: {model_class.__name__} id={entity_id}")
        return True
