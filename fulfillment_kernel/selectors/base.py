"""
Module: fulfillment_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/base.py and
    models/.  Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller and MUST
      NOT call session.add(), session.delete(), session.commit(), or
      session.flush().
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    The caller owns the session and its transaction scope.
    """

    def __init__(self, session: Session):
        self.session = session
