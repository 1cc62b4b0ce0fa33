"""
Module: cogs_kernel.models.stock_in_document
Responsibility: Header row for a goods receipt.  STOCK_IN cost layers carry
    the document id as their ref_id.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase


class StockInDocument(TrackedBase):
    __tablename__ = "stock_in_documents"

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    reference: Mapped[str] = mapped_column(String(100), nullable=False)

    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<StockInDocument {self.reference}>"
