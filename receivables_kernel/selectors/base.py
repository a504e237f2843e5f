"""
Module: receivables_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors are the query side of the kernel: structured read access to
    notes, installments and settlements without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, domain/
    and models/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors use the caller's Session but never call
      session.add(), session.delete(), session.flush() or session.commit().
      Queries run under no_autoflush so pending writes are not pushed out.
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from receivables_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session

    def _scalars(self, stmt) -> list:
        with self.session.no_autoflush:
            return list(self.session.execute(stmt).scalars().all())

    def _rows(self, stmt) -> list:
        with self.session.no_autoflush:
            return list(self.session.execute(stmt).all())

    def _get(self, model: type[Base], entity_id: int):
        with self.session.no_autoflush:
            return self.session.get(model, entity_id)
