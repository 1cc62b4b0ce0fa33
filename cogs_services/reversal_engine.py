"""
cogs_services.reversal_engine -- Offsetting entries for returns, voids and clears.

Responsibility:
    Post negative ledger rows that take COGS back out of the books:

    * Return reversal ("Method B"): one row per return at the weighted
      average cost of the key's active lines.  A physical return puts the
      stock back as a new RETURN cost layer at that cost; a manual reversal
      (cancellation, admin correction) restores the consumed quantity to
      the layers the shipment drew from.
    * Line-level reversal: stamp specific active lines and post an exact
      offset per line, restoring the consumed layer quantity.  Shared by
      the admin void cascade and the admin order clear.

Invariants enforced:
    - A batch's unreturned quantity is its net qty over ALL of its rows.  A
      return may never exceed it.
    - Closing a batch (final return, or reversing every remaining active
      line) posts the exact residual amount, so the batch nets to zero in
      both qty and amount, and leaves no active line behind.
    - Returned quantity is charged to the highest line numbers first.  A
      manual reversal restores exactly those lines' layers, and a later
      line-level reversal skips them, so no unit goes back to stock twice
      (whether it came back through a RETURN layer or its own layer).
    - At most one active RETURN layer per (return_id, sku).  Seeing it
      again means "already processed"; seeing it without its reversal row
      means "repair": post the missing row.

Failure modes:
    - ``apply_return`` returns False for business refusals (nothing to
      reverse, over-return); nothing is written in that case.
    - A failure posting the reversal row after the RETURN layer exists is
      logged as a warning and left for the repair path.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cogs_config import CostingConfig
from cogs_engines.depletion import DepletionEngine
from cogs_kernel.domain.business_time import to_utc
from cogs_kernel.domain.clock import Clock
from cogs_kernel.domain.costing import CostingMethod, LayerRefType, quantize_amount
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.cogs_allocation import CogsAllocation
from cogs_kernel.models.cost_layer import CostLayer
from cogs_kernel.services.base import BaseService
from cogs_services.bundle_resolver import BundleResolver
from cogs_services.layer_store import LayerStore
from cogs_services.ledger import AllocationLedger

logger = get_logger("services.reversal_engine")

ZERO = Decimal("0")
RETURN_REASON = "customer return"


class ReversalEngine(BaseService):
    """
    Takes COGS back out of the ledger and puts the units back in stock.

    Contract:
        Flushes only; the facade commits.  ``apply_return`` answers business
        refusals with False, and ``reverse_lines`` / ``clear_order`` return
        the number of original lines reversed.
    Non-goals:
        - Does not re-allocate; a cleared or fully returned key is left
          UNALLOCATED for the next shipment call.
        - Does not interpret the caller's costing method; reversal cost is
          always the batch's weighted average.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: CostingConfig,
        layer_store: LayerStore,
        ledger: AllocationLedger,
        bundles: BundleResolver,
        depletion: DepletionEngine | None = None,
    ):
        super().__init__(session)
        self._clock = clock
        self._config = config
        self._layers = layer_store
        self._ledger = ledger
        self._bundles = bundles
        self._depletion = depletion or DepletionEngine()

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def apply_return(
        self,
        order_id: str,
        sku: str,
        return_qty: Decimal,
        returned_at: datetime | date,
        return_id: str | None = None,
    ) -> bool:
        """
        Reverse COGS for ``return_qty`` units of ``sku`` on ``order_id``.

        Bundles are exploded into their components; every component must
        succeed for the call to succeed.
        """
        returned_utc = to_utc(returned_at, self._config.business_timezone)

        if self._bundles.is_bundle(sku):
            exploded = self._bundles.explode(sku, return_qty)
            if not exploded:
                logger.warning(
                    "return_bundle_recipe_missing",
                    extra={"rev_order_id": order_id, "bundle_sku": sku},
                )
                return False
            return all(
                [
                    self._return_one(order_id, component, qty, returned_utc, return_id)
                    for component, qty in exploded
                ]
            )

        return self._return_one(order_id, sku, return_qty, returned_utc, return_id)

    def _return_one(
        self,
        order_id: str,
        sku: str,
        return_qty: Decimal,
        returned_at: datetime,
        return_id: str | None,
    ) -> bool:
        if return_id is not None:
            existing = self._layers.find_active_return_layer(return_id, sku)
            if existing is not None:
                return self._repair_or_skip(order_id, sku, existing, returned_at)

        active = self._ledger.active_rows(order_id, sku)
        if not active:
            if return_id is not None and not self._ledger.has_any(order_id, sku):
                return self._receive_unmatched_return(order_id, sku, return_qty, returned_at, return_id)
            logger.warning(
                "return_nothing_to_reverse",
                extra={"rev_order_id": order_id, "rev_sku": sku, "return_qty": return_qty},
            )
            return False

        batch_rows = self._ledger.batch_rows(active[0].batch_id)
        unreturned, _ = self._ledger.net(batch_rows)
        if return_qty > unreturned:
            logger.warning(
                "return_exceeds_unreturned_qty",
                extra={
                    "rev_order_id": order_id,
                    "rev_sku": sku,
                    "return_qty": return_qty,
                    "unreturned": unreturned,
                },
            )
            return False

        unit_cost = self._depletion.weighted_average(
            (row.qty, row.unit_cost_used) for row in active
        ) or ZERO

        layer_id: UUID | None = None
        if return_id is not None:
            layer = self._receive_return_layer(sku, return_qty, unit_cost, returned_at, return_id)
            if layer is None:
                return True
            layer_id = layer.id
            savepoint = self.session.begin_nested()
            try:
                self._post_return_row(active, batch_rows, return_qty, unit_cost, returned_at, layer_id)
                savepoint.commit()
            except SQLAlchemyError:
                savepoint.rollback()
                logger.warning(
                    "return_reversal_post_failed",
                    extra={"rev_order_id": order_id, "rev_sku": sku, "layer_id": str(layer_id)},
                    exc_info=True,
                )
            return True

        restored = self._restore_returned_stock(active, batch_rows, return_qty)
        self._post_return_row(active, batch_rows, return_qty, unit_cost, returned_at, None)
        logger.info(
            "return_stock_restored",
            extra={
                "rev_order_id": order_id,
                "rev_sku": sku,
                "return_qty": return_qty,
                "layers": {str(layer_id): qty for layer_id, qty in restored},
            },
        )
        return True

    def _restore_returned_stock(
        self,
        active: Sequence[CogsAllocation],
        batch_rows: Sequence[CogsAllocation],
        return_qty: Decimal,
    ) -> list[tuple[UUID, Decimal]]:
        """Give ``return_qty`` back to the layers of the highest still-open lines."""
        net_qty, _ = self._ledger.net(batch_rows)
        open_by_line = self._open_quantities(active, net_qty)

        remaining = return_qty
        restored: list[tuple[UUID, Decimal]] = []
        for row in sorted(active, key=lambda r: r.line_no, reverse=True):
            if remaining <= ZERO:
                break
            take = min(open_by_line[row.id], remaining)
            if take <= ZERO:
                continue
            if row.layer_id is not None:
                self._layers.restore(row.layer_id, take)
                restored.append((row.layer_id, take))
            remaining -= take
        return restored

    @staticmethod
    def _open_quantities(
        active: Sequence[CogsAllocation],
        net_qty: Decimal,
    ) -> dict[UUID, Decimal]:
        """Per-line quantity not yet returned; returns use up the highest line numbers first."""
        ordered = sorted(active, key=lambda r: r.line_no)
        returned = max(sum((r.qty for r in ordered), ZERO) - net_qty, ZERO)
        open_by_line: dict[UUID, Decimal] = {}
        for row in reversed(ordered):
            take = min(row.qty, returned)
            open_by_line[row.id] = row.qty - take
            returned -= take
        return open_by_line

    def _post_return_row(
        self,
        active: Sequence[CogsAllocation],
        batch_rows: Sequence[CogsAllocation],
        return_qty: Decimal,
        unit_cost: Decimal,
        returned_at: datetime,
        layer_id: UUID | None,
    ) -> CogsAllocation:
        first = active[0]
        net_qty, net_amount = self._ledger.net(batch_rows)
        closing = return_qty == net_qty
        amount = -net_amount if closing else -quantize_amount(return_qty * unit_cost)

        row = self._ledger.post_line(
            order_id=first.order_id,
            sku=first.sku,
            batch_id=first.batch_id,
            line_no=0,
            shipped_at=returned_at,
            method=CostingMethod(first.method),
            qty=-return_qty,
            unit_cost=unit_cost,
            amount=amount,
            layer_id=layer_id,
            is_reversal=True,
        )
        if closing:
            for original in active:
                self._ledger.stamp_reversed(original, RETURN_REASON)
            self.session.flush()

        logger.info(
            "return_reversal_posted",
            extra={
                "rev_order_id": first.order_id,
                "rev_sku": first.sku,
                "return_qty": return_qty,
                "unit_cost": row.unit_cost_used,
                "amount": row.amount,
                "closing": closing,
                "layer_id": str(layer_id) if layer_id else None,
            },
        )
        return row

    def _receive_return_layer(
        self,
        sku: str,
        qty: Decimal,
        unit_cost: Decimal,
        returned_at: datetime,
        return_id: str,
    ) -> CostLayer | None:
        """Create the RETURN layer; None when a concurrent run already did."""
        savepoint = self.session.begin_nested()
        try:
            layer = self._layers.receive(
                sku, qty, unit_cost, returned_at, LayerRefType.RETURN, return_id
            )
            savepoint.commit()
            return layer
        except IntegrityError:
            savepoint.rollback()
            logger.info(
                "return_layer_already_exists",
                extra={"return_id": return_id, "rev_sku": sku},
            )
            return None

    def _receive_unmatched_return(
        self,
        order_id: str,
        sku: str,
        qty: Decimal,
        returned_at: datetime,
        return_id: str,
    ) -> bool:
        # Stock is physically back even though no COGS was ever booked
        logger.warning(
            "return_without_allocations",
            extra={
                "rev_order_id": order_id,
                "rev_sku": sku,
                "return_id": return_id,
                "warning": "no COGS allocations found; return layer costed at 0",
            },
        )
        self._receive_return_layer(sku, qty, ZERO, returned_at, return_id)
        return True

    def _repair_or_skip(
        self,
        order_id: str,
        sku: str,
        layer: CostLayer,
        returned_at: datetime,
    ) -> bool:
        if self._ledger.reversal_for_layer(layer.id) is not None:
            logger.info(
                "return_already_processed",
                extra={"return_id": layer.ref_id, "rev_sku": sku, "layer_id": str(layer.id)},
            )
            return True

        active = self._ledger.active_rows(order_id, sku)
        if not active:
            logger.info(
                "return_layer_without_allocations",
                extra={"return_id": layer.ref_id, "rev_sku": sku},
            )
            return True

        batch_rows = self._ledger.batch_rows(active[0].batch_id)
        unreturned, _ = self._ledger.net(batch_rows)
        if layer.qty_received > unreturned:
            logger.warning(
                "return_repair_exceeds_unreturned_qty",
                extra={
                    "return_id": layer.ref_id,
                    "rev_sku": sku,
                    "return_qty": layer.qty_received,
                    "unreturned": unreturned,
                },
            )
            return False

        logger.warning(
            "return_reversal_repaired",
            extra={"return_id": layer.ref_id, "rev_sku": sku, "layer_id": str(layer.id)},
        )
        self._post_return_row(
            active, batch_rows, layer.qty_received, layer.unit_cost, returned_at, layer.id
        )
        return True

    # ------------------------------------------------------------------
    # Line-level reversal
    # ------------------------------------------------------------------

    def reverse_lines(self, rows: Sequence[CogsAllocation], reason: str) -> int:
        """
        Stamp and offset each active row, restoring its layer.

        Returns the number of original lines reversed.
        """
        by_batch: dict[UUID, list[CogsAllocation]] = defaultdict(list)
        for row in rows:
            if row.is_active:
                by_batch[row.batch_id].append(row)

        count = 0
        for batch_id, targets in by_batch.items():
            count += self._reverse_batch_lines(batch_id, targets, reason)
        return count

    def _reverse_batch_lines(
        self,
        batch_id: UUID,
        targets: list[CogsAllocation],
        reason: str,
    ) -> int:
        batch_rows = self._ledger.batch_rows(batch_id)
        active = sorted((r for r in batch_rows if r.is_active), key=lambda r: r.line_no)
        net_qty, net_amount = self._ledger.net(batch_rows)
        open_by_line = self._open_quantities(active, net_qty)

        target_ids = {row.id for row in targets}
        closes_batch = target_ids == {row.id for row in active}

        plan: list[tuple[CogsAllocation, Decimal, Decimal]] = []
        for row in active:
            if row.id not in target_ids:
                continue
            open_qty = open_by_line[row.id]
            plan.append((row, open_qty, -quantize_amount(open_qty * row.unit_cost_used)))

        if closes_batch:
            posting = [i for i, (_, open_qty, _) in enumerate(plan) if open_qty > ZERO]
            if posting:
                last = posting[-1]
                others = sum(
                    (amount for i, (_, q, amount) in enumerate(plan) if q > ZERO and i != last),
                    ZERO,
                )
                row, open_qty, _ = plan[last]
                plan[last] = (row, open_qty, -(net_amount + others))

        for row, open_qty, amount in plan:
            self._ledger.reverse_line(row, reason, qty=open_qty, amount=amount)
            if row.layer_id is not None and open_qty > ZERO:
                self._layers.restore(row.layer_id, open_qty)

        logger.info(
            "allocation_lines_reversed",
            extra={
                "batch_id": str(batch_id),
                "lines": len(plan),
                "closes_batch": closes_batch,
                "reason": reason,
            },
        )
        return len(plan)

    def clear_order(self, order_id: str, reason: str) -> int:
        """Reverse every active batch of an order so it can be allocated afresh."""
        rows = self._ledger.active_rows_for_order(order_id)
        if not rows:
            logger.info("order_clear_nothing_active", extra={"rev_order_id": order_id})
            return 0
        count = self.reverse_lines(rows, reason)
        logger.info(
            "order_allocations_cleared",
            extra={"rev_order_id": order_id, "lines": count, "reason": reason},
        )
        return count
