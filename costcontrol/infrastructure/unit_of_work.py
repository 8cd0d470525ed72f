"""
Unit of Work - One transaction per logical operation.

Every write of a synchronization, recompute or edit goes through a single
session transaction that is committed once at the end. Any exception
before the commit rolls the whole operation back.
"""
import logging
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from costcontrol.domain.exceptions import PartialStoreFailureError, SyncCancelledError

logger = logging.getLogger(__name__)


class Deadline:
    """
    Caller-supplied time limit, checked between steps.

    A Deadline with no limit never expires.
    """

    def __init__(self, seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock() + seconds
        self._cancelled = False

    @classmethod
    def after(cls, seconds: Optional[float]) -> "Deadline":
        return cls(seconds)

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def cancel(self) -> None:
        """Expire the deadline immediately."""
        self._cancelled = True

    @property
    def remaining(self) -> Optional[float]:
        if self._cancelled:
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining
        return remaining is not None and remaining <= 0

    def check(self, operation: str, step: str) -> None:
        """Raise SyncCancelledError if the deadline has passed."""
        if self.expired:
            logger.warning("%s cancelled at step '%s': deadline expired", operation, step)
            raise SyncCancelledError(operation, step)


class UnitOfWork:
    """
    Transaction boundary around one operation.

    Usage:
        with UnitOfWork(session, "import_from_estimate", deadline) as uow:
            ...
            uow.checkpoint("create")
            ...
            uow.commit()

    Leaving the block without commit() rolls back. Database errors raised
    inside the block surface as PartialStoreFailureError.
    """

    def __init__(self, session: Session, operation: str, deadline: Optional[Deadline] = None):
        self.session = session
        self.operation = operation
        self.deadline = deadline or Deadline.never()
        self.committed = False

    def __enter__(self) -> "UnitOfWork":
        logger.debug("Begin unit of work: %s", self.operation)
        return self

    def checkpoint(self, step: str) -> None:
        """Mark the end of a step; cancels the operation if the deadline passed."""
        self.deadline.check(self.operation, step)
        logger.debug("%s: step '%s' done", self.operation, step)

    def commit(self) -> None:
        """Commit all pending writes as one transaction."""
        self.deadline.check(self.operation, "commit")
        self.session.commit()
        self.committed = True
        logger.debug("Committed unit of work: %s", self.operation)

    def rollback(self) -> None:
        self.session.rollback()
        logger.info("Rolled back unit of work: %s", self.operation)

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            self.rollback()
            if isinstance(exc, SQLAlchemyError):
                logger.error("Store write failed during %s: %s", self.operation, exc)
                raise PartialStoreFailureError(self.operation, str(exc)) from exc
            return False
        if not self.committed:
            self.rollback()
        return False
