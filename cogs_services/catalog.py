"""
cogs_services.catalog -- Write side of the SKU master.

A SKU is either stocked (holds cost layers, may be a bundle component) or a
bundle (holds no layers of its own, never a component).  Both the item
upsert and the recipe upsert go through ``ensure_bundle_eligible`` before a
SKU is flagged as a bundle.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_kernel.domain.clock import Clock
from cogs_kernel.exceptions import ValidationError
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.inventory_item import InventoryItem
from cogs_kernel.selectors.catalog_selector import CatalogSelector
from cogs_kernel.services.base import BaseService

logger = get_logger("services.catalog")


def ensure_bundle_eligible(catalog: CatalogSelector, sku: str) -> None:
    """
    Raises:
        ValidationError: ``sku`` is a component of another bundle, or still
            holds unvoided cost layers that would be stranded.
    """
    if catalog.is_component(sku):
        raise ValidationError("bundle_sku", f"{sku} is a component of another bundle")
    if catalog.holds_layers(sku):
        raise ValidationError("bundle_sku", f"{sku} already holds cost layers")


class CatalogService(BaseService):

    def __init__(
        self,
        session: Session,
        actor_id: UUID,
        clock: Clock,
        catalog: CatalogSelector | None = None,
    ):
        super().__init__(session)
        self._actor_id = actor_id
        self._clock = clock
        self._catalog = catalog or CatalogSelector(session)

    def upsert_item(
        self,
        sku: str,
        product_name: str,
        base_cost_per_unit: Decimal = Decimal("0"),
        is_bundle: bool = False,
    ) -> InventoryItem:
        """Create or update the item row for ``sku``."""
        sku = (sku or "").strip()
        if not sku:
            raise ValidationError("sku", "sku is required")
        if not (product_name or "").strip():
            raise ValidationError("product_name", "product name is required")
        if base_cost_per_unit < 0:
            raise ValidationError("base_cost_per_unit", "cannot be negative")

        item = self.session.execute(
            select(InventoryItem).where(InventoryItem.sku == sku)
        ).scalar_one_or_none()
        if is_bundle and not (item is not None and item.is_bundle):
            ensure_bundle_eligible(self._catalog, sku)

        now = self._clock.now_utc()
        created = item is None
        if created:
            item = InventoryItem(
                sku=sku,
                created_at=now,
                created_by_id=self._actor_id,
            )
            self.session.add(item)
        item.product_name = product_name.strip()
        item.base_cost_per_unit = base_cost_per_unit
        item.is_bundle = is_bundle
        item.updated_at = now
        self.session.flush()

        logger.info(
            "inventory_item_upserted",
            extra={"item_sku": sku, "is_new": created, "is_bundle": is_bundle},
        )
        return item
