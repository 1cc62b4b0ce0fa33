"""
BaseService -- abstract base for all costing services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service.  Services use ``session.flush()``, never
    ``session.commit()``; the CostingService facade owns the transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for write-side services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.  Savepoints (``begin_nested``) are the
          only transaction control a service may use.
    """

    def __init__(self, session: Session):
        self.session = session
