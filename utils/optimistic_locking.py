"""
Optimistic Locking Infrastructure
Version-based concurrency control for ledger records
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Dict, Type

from sqlalchemy import insert, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Base
from utils.exception_handler import ConcurrentUpdateError

logger = logging.getLogger(__name__)


class OptimisticLockingError(Exception):
    """Raised when optimistic locking fails due to version conflict"""
    pass


class OptimisticLockManager:
    """
    Version-checked writes inside a caller-owned session.

    Nothing here commits; the caller commits once all writes of one atomic
    unit succeeded, or rolls back on the first conflict.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _primary_key(model_class: Type[Base]):
        return model_class.__mapper__.primary_key[0]

    async def versioned_update(
        self,
        model_class: Type[Base],
        entity_id: Any,
        updates: Dict[str, Any],
        current_version: int,
    ) -> None:
        """
        Perform version-controlled update

        Args:
            model_class: SQLAlchemy model class
            entity_id: Primary key value
            updates: Column values to write, including the new version
            current_version: Version the caller read

        Raises:
            OptimisticLockingError: If no row carried the expected version
        """
        try:
            stmt = update(model_class).where(
                self._primary_key(model_class) == entity_id,
                model_class.version == current_version,
            ).values(updates)

            result = await self.session.execute(stmt)

            if result.rowcount == 0:
                logger.warning(
                    f"🔒 Optimistic lock conflict: {model_class.__name__} id={entity_id} "
                    f"expected_version={current_version}"
                )
                raise OptimisticLockingError(
                    f"Version conflict for {model_class.__name__} id={entity_id}. "
                    f"Expected version {current_version} but entity was modified by another process."
                )

            logger.debug(
                f"✅ Versioned update successful: {model_class.__name__} id={entity_id} "
                f"v{current_version} → v{updates.get('version')}"
            )

        except SQLAlchemyError as e:
            logger.error(f"❌ Database error during versioned update: {e}")
            raise

    async def versioned_insert(self, model_class: Type[Base], values: Dict[str, Any]) -> None:
        """Insert a new row; a duplicate key surfaces as IntegrityError from the flush or commit"""
        await self.session.execute(insert(model_class).values(values))


def with_async_optimistic_locking(
    max_retries: int = 3,
    retry_delay: float = 0.01,
    backoff_factor: float = 2.0,
):
    """
    Re-run an async operation that lost a compare-and-swap.

    The wrapped function must re-read everything it needs on each call.
    After the last retry the conflict is reported as ConcurrentUpdateError.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_delay = retry_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except OptimisticLockingError as e:
                    if attempt < max_retries:
                        logger.info(
                            f"🔄 Async optimistic lock retry {attempt + 1}/{max_retries} "
                            f"for {func.__name__}: {e}"
                        )
                        await asyncio.sleep(current_delay)
                        current_delay *= backoff_factor
                    else:
                        logger.error(
                            f"❌ Async optimistic lock failed after {max_retries} retries "
                            f"for {func.__name__}: {e}"
                        )
                        raise ConcurrentUpdateError() from e

        return wrapper
    return decorator
