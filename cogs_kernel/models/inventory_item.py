"""
Module: cogs_kernel.models.inventory_item
Responsibility: ORM persistence for the SKU master.  Decides whether a SKU is
    a bundle (kit) and whether it may be costed at all.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase


class InventoryItem(TrackedBase):
    """
    One registered SKU.

    Guarantees:
        - sku is unique.
        - base_cost_per_unit >= 0 (CHECK).
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        CheckConstraint("base_cost_per_unit >= 0", name="ck_item_base_cost_nonneg"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    base_cost_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    is_bundle: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        kind = "bundle" if self.is_bundle else "item"
        return f"<InventoryItem {self.sku} ({kind})>"
