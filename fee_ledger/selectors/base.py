"""
Module: fee_ledger.selectors.base
Responsibility: Abstract base class for read-only ledger queries.  Selectors
    are the read side of the package: services write, selectors project.
Architecture position: Kernel > Selectors.  May import from db/ and models/.
    MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never call session.add(), session.delete(),
      session.flush() or session.commit().
    - Selectors return frozen dataclasses, not ORM instances.
    - The caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fee_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Guarantees:
        - No commit, flush, add or delete operations are performed.
    """

    def __init__(self, session: Session):
        self.session = session
