"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service in the kernel.  Concrete services receive a
    SQLAlchemy ``Session`` and persist via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (ReceivablesService or a test harness) owns commit/rollback.
    - Rows whose balances are about to change are loaded with
      ``SELECT ... FOR UPDATE`` so concurrent writers on PostgreSQL queue
      behind each other.
    - A flush that loses an optimistic version race surfaces as
      ConcurrentModificationError, never as a raw StaleDataError.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from receivables_kernel.db.base import Base
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.exceptions import ConcurrentModificationError, NotFoundError
from receivables_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)

logger = get_logger("services.base")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read views -- those belong in
          ``receivables_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _load_for_update(
        self,
        model: type[Base],
        entity_id: int,
        not_found: type[NotFoundError],
    ):
        """Load one row with a row-level lock, raising ``not_found`` if absent."""
        entity = self.session.execute(
            select(model).where(model.id == entity_id).with_for_update()
        ).scalar_one_or_none()
        if entity is None:
            raise not_found(entity_id)
        return entity

    def _flush(self, entity_type: str, entity_id: int | None) -> None:
        """Flush pending writes, translating lost version races."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "concurrent_modification_detected",
                extra={"entity_type": entity_type, "entity_id": entity_id},
            )
            raise ConcurrentModificationError(entity_type, entity_id) from exc
