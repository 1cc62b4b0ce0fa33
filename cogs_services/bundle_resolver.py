"""
cogs_services.bundle_resolver -- Bundle (kit) recipes and per-component allocation.

Responsibility:
    Maintain bundle recipes and allocate a shipped bundle by allocating each
    component through the AllocationEngine.  Idempotency is per component:
    a rerun after a partial outcome only books the components still
    missing.

Invariants enforced:
    - Recipes are flat: a bundle cannot be a component, a component cannot
      be a bundle, and a bundle never holds cost layers of its own.
    - quantity_per_set > 0, no self reference, no duplicate components.
    - Callers never pre-skip a bundle order at order level; only the
      per-component keys decide what is already booked.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from cogs_config import CostingConfig
from cogs_engines.bundle import BundleEngine
from cogs_kernel.domain.clock import Clock
from cogs_kernel.domain.costing import (
    AllocationResult,
    BundleComponent,
    CostingMethod,
    FailureReason,
)
from cogs_kernel.exceptions import SkuNotFoundError, ValidationError
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.bundle_component import BundleComponentModel
from cogs_kernel.models.inventory_item import InventoryItem
from cogs_kernel.selectors.catalog_selector import CatalogSelector
from cogs_kernel.services.base import BaseService
from cogs_services.allocation_engine import AllocationEngine
from cogs_services.catalog import ensure_bundle_eligible

logger = get_logger("services.bundle_resolver")


def _coerce_component(raw: Any, position: int) -> BundleComponent:
    """Accept BundleComponent, mapping or (sku, qty) pair."""
    if isinstance(raw, BundleComponent):
        sku, qty = raw.component_sku, raw.quantity
    elif isinstance(raw, dict):
        sku = raw.get("component_sku") or raw.get("sku")
        qty = raw.get("quantity", raw.get("qty"))
    else:
        try:
            sku, qty = raw
        except (TypeError, ValueError):
            raise ValidationError("components", f"unrecognised component: {raw!r}") from None
    try:
        quantity = Decimal(str(qty))
    except (InvalidOperation, TypeError):
        raise ValidationError("quantity", f"not a number: {qty!r}") from None
    return BundleComponent(
        component_sku=(sku or "").strip(),
        quantity=quantity,
        position=position,
    )


class BundleResolver(BaseService):
    """
    Recipe maintenance plus fan-out of a bundle shipment to its components.

    Contract:
        Flushes only; the facade commits.  ``upsert_recipe`` raises
        ValidationError / SkuNotFoundError, ``allocate`` always returns an
        AllocationResult aggregated over the components.
    Non-goals:
        - Does not cost the bundle itself; its COGS is the sum of its
          components' allocations.
        - Does not support nested bundles.
    """

    def __init__(
        self,
        session: Session,
        actor_id: UUID,
        clock: Clock,
        config: CostingConfig,
        engine: AllocationEngine,
        catalog: CatalogSelector | None = None,
        bundle_engine: BundleEngine | None = None,
    ):
        super().__init__(session)
        self._actor_id = actor_id
        self._clock = clock
        self._config = config
        self._engine = engine
        self._catalog = catalog or CatalogSelector(session)
        self._bundles = bundle_engine or BundleEngine()

    # ------------------------------------------------------------------
    # Recipes
    # ------------------------------------------------------------------

    def upsert_recipe(self, bundle_sku: str, components: Sequence[Any]) -> list[BundleComponent]:
        """
        Replace the whole recipe of ``bundle_sku``.

        Raises:
            ValidationError: empty recipe, bad quantity, self reference,
                duplicates, nested bundles, or a bundle that holds layers.
            SkuNotFoundError: unregistered bundle or component while
                registration is required.
        """
        bundle_sku = (bundle_sku or "").strip()
        if not bundle_sku:
            raise ValidationError("bundle_sku", "bundle_sku is required")
        if not components:
            raise ValidationError("components", "a recipe needs at least one component")

        recipe = [_coerce_component(raw, pos) for pos, raw in enumerate(components)]
        self._validate_recipe(bundle_sku, recipe)

        self.session.execute(
            delete(BundleComponentModel).where(BundleComponentModel.bundle_sku == bundle_sku)
        )
        now = self._clock.now_utc()
        for component in recipe:
            self.session.add(
                BundleComponentModel(
                    bundle_sku=bundle_sku,
                    component_sku=component.component_sku,
                    quantity=component.quantity,
                    position=component.position,
                    created_at=now,
                    created_by_id=self._actor_id,
                )
            )

        item = self.session.execute(
            select(InventoryItem).where(InventoryItem.sku == bundle_sku)
        ).scalar_one_or_none()
        if item is not None and not item.is_bundle:
            item.is_bundle = True
            item.updated_at = now
        self.session.flush()

        logger.info(
            "bundle_recipe_upserted",
            extra={
                "bundle_sku": bundle_sku,
                "components": [
                    {"sku": c.component_sku, "qty": c.quantity} for c in recipe
                ],
            },
        )
        return recipe

    def _validate_recipe(self, bundle_sku: str, recipe: list[BundleComponent]) -> None:
        if self._config.require_registered_skus and not self._catalog.item_exists(bundle_sku):
            raise SkuNotFoundError(bundle_sku)
        ensure_bundle_eligible(self._catalog, bundle_sku)

        seen: set[str] = set()
        for component in recipe:
            sku = component.component_sku
            if not sku:
                raise ValidationError("component_sku", "component sku is required")
            if component.quantity <= 0:
                raise ValidationError("quantity", f"{sku}: quantity per set must be positive")
            if sku == bundle_sku:
                raise ValidationError("component_sku", "a bundle cannot contain itself")
            if sku in seen:
                raise ValidationError("component_sku", f"{sku} listed more than once")
            seen.add(sku)
            if self._config.require_registered_skus and not self._catalog.item_exists(sku):
                raise SkuNotFoundError(sku)
            if self._catalog.is_bundle(sku):
                raise ValidationError("component_sku", f"{sku} is itself a bundle")

    def get_components(self, bundle_sku: str) -> list[BundleComponent]:
        return self._catalog.recipe(bundle_sku)

    def is_bundle(self, sku: str) -> bool:
        return self._catalog.is_bundle(sku)

    def explode(self, bundle_sku: str, sets: Decimal) -> list[tuple[str, Decimal]]:
        """Component quantities for ``sets`` bundles (empty if no recipe)."""
        components = self.get_components(bundle_sku)
        if not components:
            return []
        return self._bundles.explode(components, sets)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(
        self,
        order_id: str,
        bundle_sku: str,
        sets: Decimal,
        shipped_at: datetime,
        method: CostingMethod,
    ) -> AllocationResult:
        exploded = self.explode(bundle_sku, sets)
        if not exploded:
            logger.warning(
                "bundle_recipe_missing",
                extra={"alloc_order_id": order_id, "bundle_sku": bundle_sku},
            )
            return AllocationResult.failed(
                order_id,
                (bundle_sku,),
                FailureReason.NO_BUNDLE_RECIPE,
                message=f"bundle {bundle_sku} has no components",
                requested_qty=sets,
            )

        outcomes = [
            (component_sku, self._engine.allocate(order_id, component_sku, qty, shipped_at, method))
            for component_sku, qty in exploded
        ]
        result = self._bundles.aggregate(order_id, outcomes)

        logger.info(
            "bundle_allocation_completed",
            extra={
                "alloc_order_id": order_id,
                "bundle_sku": bundle_sku,
                "status": result.status.value,
                "allocated_skus": list(result.allocated_skus),
                "missing_skus": list(result.missing_skus),
            },
        )
        return result
