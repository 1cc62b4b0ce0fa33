"""
cogs_services.layer_store -- Cost-layer lifecycle: receive, deplete, restore, void.

Responsibility:
    Own every write to ``cost_layers``.  Receipts (opening balance, stock
    in, returns) create layers; allocations deplete them through an
    optimistic conditional UPDATE; reversals restore them; admins void or
    amend them.

Architecture position:
    Services -- stateful orchestration over kernel models.  Used by the
    allocation engine (lock + deplete), the reversal engine (receive +
    restore) and the CostingService facade (admin actions).

Invariants enforced:
    - 0 <= qty_remaining <= qty_received.  ``deplete`` and ``restore`` carry
      the bound in their WHERE clause, so a stale read can never push a
      layer out of range; a zero rowcount is reported, not retried here.
    - Ordinary void and amend only touch untouched layers that no active
      allocation references.
    - Bundle SKUs never receive layers.

Failure modes:
    - ValidationError / SkuNotFoundError on bad receipt input.
    - LayerNotFoundError, LayerInUseError, LayerAlreadyVoidedError on
      admin actions.
    - ConcurrentModificationError when a restore guard matches no row.

Audit relevance:
    Layers are never deleted.  Voids stamp voided_at / voided_by_id /
    void_reason; every lifecycle step is logged with layer_id and sku.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from cogs_config import CostingConfig
from cogs_engines.depletion import LayerPosition
from cogs_kernel.domain.business_time import as_utc, business_date, to_utc
from cogs_kernel.domain.clock import Clock
from cogs_kernel.domain.costing import LayerRefType, quantize_amount
from cogs_kernel.domain.dtos import LayerActionResult
from cogs_kernel.exceptions import (
    ConcurrentModificationError,
    LayerAlreadyVoidedError,
    LayerInUseError,
    LayerNotFoundError,
    SkuNotFoundError,
    ValidationError,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.cogs_allocation import CogsAllocation
from cogs_kernel.models.cost_layer import CostLayer
from cogs_kernel.selectors.catalog_selector import CatalogSelector
from cogs_kernel.services.base import BaseService
from cogs_kernel.services.sequence_service import SequenceService
from cogs_services.snapshot import LoggingSnapshotRebuilder, SnapshotRebuilder

logger = get_logger("services.layer_store")


class LineReverser(Protocol):
    def reverse_lines(self, rows: Sequence[CogsAllocation], reason: str) -> int:
        """Reverse active allocation lines, restoring stock; returns lines reversed."""
        ...


class LayerStore(BaseService):
    """
    Write side of ``cost_layers``.

    Non-goals:
        - Does not choose which layers a shipment consumes (DepletionEngine).
        - Does not commit.
    """

    def __init__(
        self,
        session: Session,
        actor_id: UUID,
        clock: Clock,
        config: CostingConfig,
        catalog: CatalogSelector | None = None,
        sequence: SequenceService | None = None,
        snapshot_rebuilder: SnapshotRebuilder | None = None,
    ):
        super().__init__(session)
        self._actor_id = actor_id
        self._clock = clock
        self._config = config
        self._catalog = catalog or CatalogSelector(session)
        self._sequence = sequence or SequenceService(session)
        self._snapshots = snapshot_rebuilder or LoggingSnapshotRebuilder()

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    def receive(
        self,
        sku: str,
        qty: Decimal,
        unit_cost: Decimal,
        received_at: datetime | date,
        ref_type: LayerRefType,
        ref_id: str | None = None,
    ) -> CostLayer:
        """
        Create an active layer with qty_remaining == qty_received.

        Raises:
            ValidationError: blank sku, qty <= 0, unit_cost < 0, bundle SKU.
            SkuNotFoundError: unregistered SKU while registration is required.
        """
        sku = (sku or "").strip()
        if not sku:
            raise ValidationError("sku", "sku is required")
        if qty is None or qty <= 0:
            raise ValidationError("qty", f"quantity must be positive, got {qty}")
        if unit_cost is None or unit_cost < 0:
            raise ValidationError("unit_cost", f"unit cost cannot be negative, got {unit_cost}")
        if received_at is None:
            raise ValidationError("received_at", "receipt timestamp is required")
        if self._catalog.is_bundle(sku):
            raise ValidationError("sku", f"{sku} is a bundle and cannot hold cost layers")
        if self._config.require_registered_skus and not self._catalog.item_exists(sku):
            raise SkuNotFoundError(sku)

        now = self._clock.now_utc()
        layer = CostLayer(
            sku=sku,
            received_at=to_utc(received_at, self._config.business_timezone),
            qty_received=qty,
            qty_remaining=qty,
            unit_cost=quantize_amount(unit_cost),
            ref_type=ref_type.value,
            ref_id=ref_id,
            seq=self._sequence.next_value(SequenceService.COST_LAYER),
            voided=False,
            created_at=now,
            created_by_id=self._actor_id,
            updated_at=now,
        )
        self.session.add(layer)
        self.session.flush()

        logger.info(
            "cost_layer_received",
            extra={
                "layer_id": str(layer.id),
                "layer_sku": sku,
                "qty": qty,
                "unit_cost": layer.unit_cost,
                "ref_type": ref_type.value,
                "ref_id": ref_id,
                "seq": layer.seq,
            },
        )
        return layer

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def lock_available(self, sku: str) -> list[CostLayer]:
        """Active layers with stock left, FIFO-ordered, row-locked where supported."""
        return list(
            self.session.scalars(
                select(CostLayer)
                .where(
                    CostLayer.sku == sku,
                    CostLayer.voided.is_(False),
                    CostLayer.qty_remaining > 0,
                )
                .order_by(CostLayer.received_at, CostLayer.seq)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        )

    @staticmethod
    def positions(layers: Sequence[CostLayer]) -> list[LayerPosition]:
        return [
            LayerPosition(
                layer_id=layer.id,
                received_at=as_utc(layer.received_at),
                seq=layer.seq,
                qty_remaining=layer.qty_remaining,
                unit_cost=layer.unit_cost,
            )
            for layer in layers
        ]

    def deplete(self, layer_id: UUID, qty: Decimal) -> bool:
        """
        Atomically take ``qty`` from an active layer.

        Returns False when the guarded UPDATE matched no row (another
        transaction consumed or voided the layer since it was read).
        """
        result = self.session.execute(
            update(CostLayer)
            .where(
                CostLayer.id == layer_id,
                CostLayer.qty_remaining >= qty,
                CostLayer.voided.is_(False),
            )
            .values(
                qty_remaining=CostLayer.qty_remaining - qty,
                updated_at=self._clock.now_utc(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            logger.warning(
                "cost_layer_deplete_conflict",
                extra={"layer_id": str(layer_id), "qty": qty},
            )
            return False
        return True

    def restore(self, layer_id: UUID, qty: Decimal) -> None:
        """
        Give ``qty`` back to a layer (voided layers included).

        Raises:
            ConcurrentModificationError: the bound qty_remaining + qty <=
                qty_received did not hold.
        """
        result = self.session.execute(
            update(CostLayer)
            .where(
                CostLayer.id == layer_id,
                CostLayer.qty_remaining + qty <= CostLayer.qty_received,
            )
            .values(
                qty_remaining=CostLayer.qty_remaining + qty,
                updated_at=self._clock.now_utc(),
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(str(layer_id), 1)
        logger.info(
            "cost_layer_restored",
            extra={"layer_id": str(layer_id), "qty": qty},
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_for_update(self, layer_id: UUID) -> CostLayer:
        layer = self.session.scalars(
            select(CostLayer)
            .where(CostLayer.id == layer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()
        if layer is None:
            raise LayerNotFoundError(str(layer_id))
        return layer

    def find_active_return_layer(self, return_id: str, sku: str) -> CostLayer | None:
        return self.session.scalars(
            select(CostLayer).where(
                CostLayer.ref_type == LayerRefType.RETURN.value,
                CostLayer.ref_id == return_id,
                CostLayer.sku == sku,
                CostLayer.voided.is_(False),
            )
        ).first()

    def _referenced_by_active_allocation(self, layer_id: UUID) -> bool:
        return self.session.execute(
            select(CogsAllocation.id)
            .where(
                CogsAllocation.layer_id == layer_id,
                CogsAllocation.is_reversal.is_(False),
                CogsAllocation.reversed_at.is_(None),
            )
            .limit(1)
        ).first() is not None

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    def _check_reason(self, reason: str | None) -> str:
        reason = (reason or "").strip()
        if len(reason) < self._config.min_void_reason_length:
            raise ValidationError(
                "reason",
                f"must be at least {self._config.min_void_reason_length} characters",
            )
        return reason

    def _check_untouched(self, layer: CostLayer) -> None:
        if layer.qty_remaining != layer.qty_received:
            raise LayerInUseError(
                str(layer.id),
                f"{layer.qty_received - layer.qty_remaining} unit(s) already consumed",
            )
        if self._referenced_by_active_allocation(layer.id):
            raise LayerInUseError(str(layer.id), "referenced by active allocations")

    def _mark_voided(self, layer: CostLayer, reason: str) -> None:
        now = self._clock.now_utc()
        layer.voided = True
        layer.voided_at = now
        layer.voided_by_id = self._actor_id
        layer.void_reason = reason
        layer.updated_at = now

    def void(self, layer_id: UUID, reason: str) -> CostLayer:
        """
        Soft-delete an untouched layer.

        Raises:
            ValidationError: reason too short.
            LayerNotFoundError / LayerAlreadyVoidedError / LayerInUseError.
        """
        reason = self._check_reason(reason)
        layer = self.get_for_update(layer_id)
        if layer.voided:
            raise LayerAlreadyVoidedError(str(layer_id))
        self._check_untouched(layer)

        self._mark_voided(layer, reason)
        self.session.flush()
        logger.info(
            "cost_layer_voided",
            extra={"layer_id": str(layer_id), "layer_sku": layer.sku, "reason": reason},
        )
        return layer

    def void_with_reversal(
        self,
        layer_id: UUID,
        reason: str,
        reverser: LineReverser,
    ) -> LayerActionResult:
        """
        Admin void: mark voided unconditionally, then reverse every active
        allocation line that consumed from the layer and ask for a snapshot
        rebuild from the earliest affected business day through today.

        Idempotent: an already-voided layer reports success with a warning.
        """
        reason = self._check_reason(reason)
        layer = self.get_for_update(layer_id)
        if layer.voided:
            logger.warning(
                "cost_layer_void_already_voided",
                extra={"layer_id": str(layer_id), "layer_sku": layer.sku},
            )
            return LayerActionResult(
                success=True,
                layer_id=layer.id,
                message="Layer already voided",
                warnings=("layer was already voided; nothing reprocessed",),
            )

        self._mark_voided(layer, reason)
        self.session.flush()

        rows = self.session.scalars(
            select(CogsAllocation)
            .where(
                CogsAllocation.layer_id == layer.id,
                CogsAllocation.is_reversal.is_(False),
                CogsAllocation.reversed_at.is_(None),
            )
            .order_by(CogsAllocation.shipped_at, CogsAllocation.line_no)
        ).all()
        earliest = min(
            [as_utc(layer.received_at)] + [as_utc(row.shipped_at) for row in rows]
        )
        reversed_count = reverser.reverse_lines(rows, reason) if rows else 0

        tz = self._config.business_timezone
        start = business_date(earliest, tz)
        end = self._clock.business_today(tz)
        self._snapshots.rebuild(layer.sku, start, max(start, end))

        logger.info(
            "cost_layer_voided_with_reversal",
            extra={
                "layer_id": str(layer_id),
                "layer_sku": layer.sku,
                "reversed_lines": reversed_count,
                "rebuild_start": start,
                "reason": reason,
            },
        )
        return LayerActionResult(
            success=True,
            layer_id=layer.id,
            message=f"Voided layer and reversed {reversed_count} allocation line(s)",
            reversed_lines=reversed_count,
        )

    def amend(
        self,
        layer_id: UUID,
        qty: Decimal,
        unit_cost: Decimal,
        received_at: datetime | date,
    ) -> CostLayer:
        """
        Edit an untouched opening-balance layer in place.

        Raises:
            ValidationError: not an opening balance, voided, or bad values.
            LayerInUseError: consumed or referenced.
        """
        if qty is None or qty <= 0:
            raise ValidationError("qty", f"quantity must be positive, got {qty}")
        if unit_cost is None or unit_cost < 0:
            raise ValidationError("unit_cost", f"unit cost cannot be negative, got {unit_cost}")

        layer = self.get_for_update(layer_id)
        if layer.ref_type != LayerRefType.OPENING_BALANCE.value:
            raise ValidationError("layer_id", "only opening-balance layers can be amended")
        if layer.voided:
            raise ValidationError("layer_id", "voided layers cannot be amended")
        self._check_untouched(layer)

        layer.qty_received = qty
        layer.qty_remaining = qty
        layer.unit_cost = quantize_amount(unit_cost)
        layer.received_at = to_utc(received_at, self._config.business_timezone)
        layer.updated_at = self._clock.now_utc()
        self.session.flush()

        logger.info(
            "cost_layer_amended",
            extra={
                "layer_id": str(layer_id),
                "layer_sku": layer.sku,
                "qty": qty,
                "unit_cost": layer.unit_cost,
            },
        )
        return layer
