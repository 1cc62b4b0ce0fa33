"""
Module: cogs_kernel.db.base
Responsibility: Declarative base for the costing tables.  Fixes the column
    types every model shares: quantities, unit costs and amounts as
    Numeric(38, 9), instants as timezone-aware DateTime, ids as UUIDs that
    survive a round trip through SQLite.
Architecture position: Kernel > DB.  Imported by models/ and db/engine.py only.

Invariants enforced:
    - No float columns: a Decimal annotation always maps to Numeric(38, 9),
      which is also the precision the depletion engine quantizes to.
    - Every row has a uuid4 primary key generated client-side, so services can
      reference a new layer or allocation before the flush.
    - TrackedBase rows record who created them and when (from the injected
      Clock, not the database clock).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its canonical 36-character string; accepts UUID or str on bind."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return str(value if isinstance(value, UUID) else UUID(str(value)))

    def process_result_value(self, value: Any, dialect: Any) -> UUID | None:
        return None if value is None else UUID(value)


class Base(DeclarativeBase):

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class TrackedBase(Base):
    """Adds the creating actor and creation instant."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
