"""
Module: cogs_kernel.models.bundle_component
Responsibility: ORM persistence for bundle recipes (bundle_sku -> ordered
    component lines).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity > 0 (CHECK).
    - bundle_sku != component_sku (CHECK).
    - One line per (bundle_sku, component_sku) (UNIQUE).
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase


class BundleComponentModel(TrackedBase):
    """One component line of a bundle recipe."""

    __tablename__ = "bundle_components"

    __table_args__ = (
        UniqueConstraint("bundle_sku", "component_sku", name="uq_bundle_component"),
        CheckConstraint("quantity > 0", name="ck_bundle_component_qty_pos"),
        CheckConstraint("bundle_sku <> component_sku", name="ck_bundle_no_self_ref"),
        Index("idx_bundle_component_bundle", "bundle_sku", "position"),
    )

    bundle_sku: Mapped[str] = mapped_column(String(100), nullable=False)

    component_sku: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<BundleComponent {self.bundle_sku} -> {self.component_sku} x{self.quantity}>"
