"""
Module: cogs_kernel.selectors.catalog_selector
Responsibility: Read-only access to the SKU master and bundle recipes.
"""

from sqlalchemy import select

from cogs_kernel.domain.costing import BundleComponent
from cogs_kernel.models.bundle_component import BundleComponentModel
from cogs_kernel.models.cost_layer import CostLayer
from cogs_kernel.models.inventory_item import InventoryItem
from cogs_kernel.selectors.base import BaseSelector


class CatalogSelector(BaseSelector):

    def item_exists(self, sku: str) -> bool:
        return self._item(sku) is not None

    def is_bundle(self, sku: str) -> bool:
        """A SKU is a bundle if flagged in the item master or it has a recipe."""
        item = self._item(sku)
        if item is not None and item.is_bundle:
            return True
        return self.session.execute(
            select(BundleComponentModel.id)
            .where(BundleComponentModel.bundle_sku == sku)
            .limit(1)
        ).first() is not None

    def recipe(self, bundle_sku: str) -> list[BundleComponent]:
        """Components of a bundle in recipe order (empty if none)."""
        rows = self.session.scalars(
            select(BundleComponentModel)
            .where(BundleComponentModel.bundle_sku == bundle_sku)
            .order_by(BundleComponentModel.position, BundleComponentModel.component_sku)
        )
        return [
            BundleComponent(
                component_sku=row.component_sku,
                quantity=row.quantity,
                position=row.position,
            )
            for row in rows
        ]

    def is_component(self, sku: str) -> bool:
        return self.session.execute(
            select(BundleComponentModel.id)
            .where(BundleComponentModel.component_sku == sku)
            .limit(1)
        ).first() is not None

    def holds_layers(self, sku: str) -> bool:
        """True while any unvoided cost layer exists for ``sku``."""
        return self.session.execute(
            select(CostLayer.id)
            .where(CostLayer.sku == sku, CostLayer.voided.is_(False))
            .limit(1)
        ).first() is not None

    def _item(self, sku: str) -> InventoryItem | None:
        return self.session.execute(
            select(InventoryItem).where(InventoryItem.sku == sku)
        ).scalar_one_or_none()
