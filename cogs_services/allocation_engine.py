"""
cogs_services.allocation_engine -- Book COGS for one (order, SKU) shipment.

Responsibility:
    Deplete a SKU's cost layers for a shipped quantity and write the
    allocation lines, by FIFO (each line at its layer's cost) or weighted
    average (every line at the single average cost, depleting layers in
    FIFO order).

Architecture position:
    Services -- composes DepletionEngine (pure planning), LayerStore
    (locking + conditional depletion) and AllocationLedger (line writes).

Invariants enforced:
    - Idempotency: an existing active line for (order_id, sku) short-circuits
      to already_allocated.  A concurrent winner is detected by the active
      line unique index; the savepoint rollback then also undoes this run's
      depletion.
    - Depletion never reads-then-writes: every step goes through
      LayerStore.deplete.  A lost race re-reads and re-plans the rest, up
      to ``max_depletion_retries`` attempts.
    - Insufficient stock keeps what was covered: lines for the consumed part
      are posted and the result is failed / insufficient_stock.

Failure modes:
    - Business outcomes are returned as AllocationResult values.
    - Infrastructure errors (other than the handled unique conflict)
      propagate to the facade.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cogs_config import CostingConfig
from cogs_engines.depletion import DepletionEngine
from cogs_kernel.domain.clock import Clock
from cogs_kernel.domain.costing import (
    AllocationResult,
    CostingMethod,
    FailureReason,
)
from cogs_kernel.exceptions import ConcurrentModificationError
from cogs_kernel.logging_config import get_logger
from cogs_kernel.services.base import BaseService
from cogs_services.layer_store import LayerStore
from cogs_services.ledger import AllocationLedger

logger = get_logger("services.allocation_engine")

ZERO = Decimal("0")


class AllocationEngine(BaseService):
    """
    Single-SKU COGS allocation.

    Contract:
        ``allocate`` takes a validated, non-bundle SKU, a positive quantity
        and a UTC shipment timestamp.
    Non-goals:
        - Bundle explosion (BundleResolver).
        - Input validation and SKU registration (CostingService).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: CostingConfig,
        layer_store: LayerStore,
        ledger: AllocationLedger,
        depletion: DepletionEngine | None = None,
    ):
        super().__init__(session)
        self._clock = clock
        self._config = config
        self._layers = layer_store
        self._ledger = ledger
        self._depletion = depletion or DepletionEngine()

    def allocate(
        self,
        order_id: str,
        sku: str,
        qty: Decimal,
        shipped_at: datetime,
        method: CostingMethod,
    ) -> AllocationResult:
        logger.info(
            "cogs_allocation_started",
            extra={
                "alloc_order_id": order_id,
                "alloc_sku": sku,
                "qty": qty,
                "method": method.value,
            },
        )

        if self._ledger.has_active(order_id, sku):
            logger.info(
                "cogs_already_allocated",
                extra={"alloc_order_id": order_id, "alloc_sku": sku},
            )
            return AllocationResult.already_allocated(order_id, (sku,))

        savepoint = self.session.begin_nested()
        try:
            result = self._deplete_and_post(order_id, sku, qty, shipped_at, method)
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            if not self._ledger.has_active(order_id, sku):
                raise
            logger.info(
                "cogs_allocation_lost_unique_race",
                extra={"alloc_order_id": order_id, "alloc_sku": sku},
            )
            return AllocationResult.already_allocated(order_id, (sku,))
        except ConcurrentModificationError as exc:
            savepoint.rollback()
            logger.warning(
                "cogs_allocation_concurrent_modification",
                extra={
                    "alloc_order_id": order_id,
                    "alloc_sku": sku,
                    "layer_id": exc.layer_id,
                    "attempts": exc.attempts,
                },
            )
            return AllocationResult.failed(
                order_id,
                (sku,),
                FailureReason.CONCURRENT_MODIFICATION,
                message=str(exc),
                requested_qty=qty,
                conflict_layer_id=exc.layer_id,
            )

        return result

    def _deplete_and_post(
        self,
        order_id: str,
        sku: str,
        qty: Decimal,
        shipped_at: datetime,
        method: CostingMethod,
    ) -> AllocationResult:
        batch_id = self._ledger.new_batch_id()
        line_no = 0
        remaining = qty
        posted_qty = ZERO
        posted_amount = ZERO
        attempts = 0

        avg_cost: Decimal | None = None
        if method == CostingMethod.AVG:
            snapshot = self._layers.positions(self._layers.lock_available(sku))
            avg_cost = self._depletion.average_of_layers(snapshot)

        while remaining > ZERO:
            layers = self._layers.lock_available(sku)
            if not layers:
                break
            plan = self._depletion.plan_fifo(self._layers.positions(layers), remaining)

            conflict: UUID | None = None
            for step in plan.steps:
                if not self._layers.deplete(step.layer_id, step.qty):
                    conflict = step.layer_id
                    break
                line_no += 1
                unit_cost = avg_cost if avg_cost is not None else step.layer_unit_cost
                row = self._ledger.post_line(
                    order_id=order_id,
                    sku=sku,
                    batch_id=batch_id,
                    line_no=line_no,
                    shipped_at=shipped_at,
                    method=method,
                    qty=step.qty,
                    unit_cost=unit_cost,
                    layer_id=step.layer_id,
                )
                remaining -= step.qty
                posted_qty += step.qty
                posted_amount += row.amount

            if conflict is None:
                # Plan fully applied; any remainder is a real shortfall
                break

            attempts += 1
            if attempts >= self._config.max_depletion_retries:
                raise ConcurrentModificationError(str(conflict), attempts)
            logger.info(
                "cogs_allocation_replan",
                extra={
                    "alloc_order_id": order_id,
                    "alloc_sku": sku,
                    "attempt": attempts,
                    "remaining": remaining,
                },
            )

        if remaining > ZERO:
            logger.warning(
                "cogs_insufficient_stock",
                extra={
                    "alloc_order_id": order_id,
                    "alloc_sku": sku,
                    "requested": qty,
                    "covered": posted_qty,
                    "amount": posted_amount,
                },
            )
            return AllocationResult.failed(
                order_id,
                (sku,),
                FailureReason.INSUFFICIENT_STOCK,
                message=f"covered {posted_qty} of {qty}",
                amount=posted_amount,
                qty=posted_qty,
                requested_qty=qty,
            )

        logger.info(
            "cogs_allocation_completed",
            extra={
                "alloc_order_id": order_id,
                "alloc_sku": sku,
                "batch_id": str(batch_id),
                "lines": line_no,
                "amount": posted_amount,
            },
        )
        return AllocationResult.success(order_id, (sku,), posted_amount, posted_qty)
