"""
Costing Service (``cogs_services.costing_service``).

Responsibility
--------------
The external surface of the COGS ledger.  Wires the layer store, ledger,
allocation engine, bundle resolver and reversal engine onto one session and
owns the transaction boundary of every public call.

Architecture
------------
Layer: **Services** -- facade.  Contains input validation and outcome
translation; every costing rule lives in the components it composes.

Invariants
----------
- Each public method owns its transaction boundary: commit on success,
  rollback on a refused business outcome or on any exception.
- Business failures never cross this boundary as exceptions: allocations
  return ``AllocationResult``, returns return ``bool``, admin layer actions
  return ``LayerActionResult``.
- Infrastructure errors are logged with ``exc_info`` and re-raised after
  rollback.

Usage::

    service = CostingService(session, actor_id)
    service.upsert_item("SKU-A", "Widget")
    service.record_opening_balance("SKU-A", Decimal("100"), Decimal("10"), date(2026, 1, 1))
    result = service.apply_cogs_for_order_shipped(
        "ORD-1", "SKU-A", Decimal("30"), shipped_at, CostingMethod.FIFO,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from cogs_config import CostingConfig, get_active_config
from cogs_engines.bundle import BundleEngine
from cogs_engines.depletion import DepletionEngine
from cogs_kernel.domain.business_time import to_utc
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.costing import (
    AllocationResult,
    AllocationState,
    BundleComponent,
    CostingMethod,
    FailureReason,
    LayerRefType,
    StockInLine,
)
from cogs_kernel.domain.dtos import LayerActionResult
from cogs_kernel.exceptions import CostingKernelError
from cogs_kernel.logging_config import LogContext, get_logger
from cogs_kernel.models.stock_in_document import StockInDocument
from cogs_kernel.selectors.allocation_selector import AllocationSelector
from cogs_kernel.selectors.catalog_selector import CatalogSelector
from cogs_kernel.services.sequence_service import SequenceService
from cogs_services.allocation_engine import AllocationEngine
from cogs_services.bundle_resolver import BundleResolver
from cogs_services.catalog import CatalogService
from cogs_services.layer_store import LayerStore
from cogs_services.ledger import AllocationLedger
from cogs_services.reversal_engine import ReversalEngine
from cogs_services.snapshot import SnapshotRebuilder

logger = get_logger("services.costing")


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _as_method(value: CostingMethod | str | None, default: CostingMethod) -> CostingMethod | None:
    if value is None:
        return default
    if isinstance(value, CostingMethod):
        return value
    try:
        return CostingMethod(str(value).strip().upper())
    except ValueError:
        return None


class CostingService:
    """
    Orchestrates costing operations through the stateful components.

    Contract
    --------
    One instance per session and acting user.  Every public method is a
    unit of work.

    Non-goals
    ---------
    - Authentication and role checks belong to the caller.
    - Batch drivers that page through orders belong to the caller.
    """

    def __init__(
        self,
        session: Session,
        actor_id: UUID,
        config: CostingConfig | None = None,
        clock: Clock | None = None,
        snapshot_rebuilder: SnapshotRebuilder | None = None,
    ):
        self._session = session
        self._actor_id = actor_id
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()

        self._catalog = CatalogSelector(session)
        self._allocations = AllocationSelector(session)
        depletion = DepletionEngine()

        self._items = CatalogService(session, actor_id, self._clock, catalog=self._catalog)
        self._ledger = AllocationLedger(session, actor_id, self._clock)
        self._layers = LayerStore(
            session,
            actor_id,
            self._clock,
            self._config,
            catalog=self._catalog,
            sequence=SequenceService(session),
            snapshot_rebuilder=snapshot_rebuilder,
        )
        self._engine = AllocationEngine(
            session, self._clock, self._config, self._layers, self._ledger, depletion
        )
        self._bundles = BundleResolver(
            session,
            actor_id,
            self._clock,
            self._config,
            self._engine,
            catalog=self._catalog,
            bundle_engine=BundleEngine(),
        )
        self._reversals = ReversalEngine(
            session,
            self._clock,
            self._config,
            self._layers,
            self._ledger,
            self._bundles,
            depletion,
        )

    @property
    def config(self) -> CostingConfig:
        return self._config

    def _context(self, operation: str, **fields: Any):
        return LogContext.bind(actor_id=str(self._actor_id), operation=operation, **fields)

    def _rollback_and_log(self, event: str, **extra: Any) -> None:
        self._session.rollback()
        logger.error(event, extra=extra, exc_info=True)

    # =========================================================================
    # Item master and recipes
    # =========================================================================

    def upsert_item(
        self,
        sku: str,
        product_name: str,
        base_cost_per_unit: Decimal = Decimal("0"),
        is_bundle: bool = False,
    ) -> UUID:
        """
        Register or update a SKU.

        Raises:
            ValidationError: blank sku or name, negative base cost, or a
                bundle flag on a SKU that holds cost layers or is a component.
        """
        with self._context("upsert_item", sku=sku):
            try:
                item = self._items.upsert_item(sku, product_name, base_cost_per_unit, is_bundle)
                self._session.commit()
                return item.id
            except Exception:
                self._rollback_and_log("upsert_item_failed", item_sku=sku)
                raise

    def upsert_bundle_recipe(self, bundle_sku: str, components: Sequence[Any]) -> bool:
        """Replace a bundle's recipe; False (with a warning log) when rejected."""
        with self._context("upsert_bundle_recipe", sku=bundle_sku):
            try:
                self._bundles.upsert_recipe(bundle_sku, components)
                self._session.commit()
                return True
            except CostingKernelError as exc:
                self._session.rollback()
                logger.warning(
                    "bundle_recipe_rejected",
                    extra={"bundle_sku": bundle_sku, "error_code": exc.code, "error": str(exc)},
                )
                return False
            except Exception:
                self._rollback_and_log("bundle_recipe_failed", bundle_sku=bundle_sku)
                raise

    def get_bundle_components(self, bundle_sku: str) -> list[BundleComponent]:
        return self._bundles.get_components(bundle_sku)

    # =========================================================================
    # Receipts
    # =========================================================================

    def record_opening_balance(
        self,
        sku: str,
        qty: Decimal,
        unit_cost: Decimal,
        on_date: date | datetime,
    ) -> UUID | None:
        """Create an OPENING_BALANCE layer; None (with a warning log) when rejected."""
        with self._context("record_opening_balance", sku=sku):
            try:
                layer = self._layers.receive(
                    sku,
                    _as_decimal(qty),
                    _as_decimal(unit_cost),
                    on_date,
                    LayerRefType.OPENING_BALANCE,
                )
                self._session.commit()
                return layer.id
            except CostingKernelError as exc:
                self._session.rollback()
                logger.warning(
                    "opening_balance_rejected",
                    extra={"layer_sku": sku, "error_code": exc.code, "error": str(exc)},
                )
                return None
            except Exception:
                self._rollback_and_log("opening_balance_failed", layer_sku=sku)
                raise

    def record_stock_in(
        self,
        reference: str,
        received_at: date | datetime,
        lines: Sequence[StockInLine],
        supplier: str | None = None,
        note: str | None = None,
    ) -> UUID | None:
        """
        Record a goods receipt: one document, one STOCK_IN layer per line.

        All lines land or none do.
        """
        with self._context("record_stock_in"):
            try:
                if not (reference or "").strip() or not lines or received_at is None:
                    logger.warning(
                        "stock_in_rejected",
                        extra={"reference": reference, "error": "reference, date and lines are required"},
                    )
                    return None
                document = StockInDocument(
                    received_at=to_utc(received_at, self._config.business_timezone),
                    reference=reference.strip(),
                    supplier=supplier,
                    note=note,
                    created_at=self._clock.now_utc(),
                    created_by_id=self._actor_id,
                )
                self._session.add(document)
                self._session.flush()
                for line in lines:
                    self._layers.receive(
                        line.sku,
                        _as_decimal(line.qty),
                        _as_decimal(line.unit_cost),
                        received_at,
                        LayerRefType.STOCK_IN,
                        str(document.id),
                    )
                self._session.commit()
                logger.info(
                    "stock_in_recorded",
                    extra={"document_id": str(document.id), "reference": reference, "lines": len(lines)},
                )
                return document.id
            except CostingKernelError as exc:
                self._session.rollback()
                logger.warning(
                    "stock_in_rejected",
                    extra={"reference": reference, "error_code": exc.code, "error": str(exc)},
                )
                return None
            except Exception:
                self._rollback_and_log("stock_in_failed", reference=reference)
                raise

    # =========================================================================
    # Shipments
    # =========================================================================

    def apply_cogs_for_order_shipped(
        self,
        order_id: str,
        sku: str,
        qty: Decimal,
        shipped_at: datetime | date,
        method: CostingMethod | str | None = None,
    ) -> AllocationResult:
        """
        Book COGS for a shipped order line (bundles are exploded).

        Postconditions:
            - success / already_allocated: committed.
            - partial or failed with posted lines (insufficient stock):
              the posted lines are committed.
            - validation failures: nothing written.
        """
        with self._context("apply_cogs_for_order_shipped", order_id=order_id, sku=sku):
            order_id = (order_id or "").strip()
            sku = (sku or "").strip()
            invalid = self._validate_shipment(order_id, sku, qty, shipped_at, method)
            if invalid is not None:
                logger.warning(
                    "cogs_allocation_rejected",
                    extra={"reason": invalid.reason.value, "error": invalid.message},
                )
                return invalid

            quantity = _as_decimal(qty)
            costing = _as_method(method, self._config.default_method)
            shipped_utc = to_utc(shipped_at, self._config.business_timezone)
            try:
                if self._catalog.is_bundle(sku):
                    result = self._bundles.allocate(order_id, sku, quantity, shipped_utc, costing)
                else:
                    result = self._engine.allocate(order_id, sku, quantity, shipped_utc, costing)
                self._session.commit()
            except Exception:
                self._rollback_and_log("cogs_allocation_failed", alloc_order_id=order_id, alloc_sku=sku)
                raise

            log = logger.info if result.is_satisfied else logger.warning
            log(
                "cogs_allocation_outcome",
                extra={
                    "status": result.status.value,
                    "reason": result.reason.value if result.reason else None,
                    "amount": result.amount,
                    "allocated_skus": list(result.allocated_skus),
                    "missing_skus": list(result.missing_skus),
                },
            )
            return result

    def _validate_shipment(
        self,
        order_id: str,
        sku: str,
        qty: Any,
        shipped_at: Any,
        method: Any,
    ) -> AllocationResult | None:
        def fail(reason: FailureReason, message: str) -> AllocationResult:
            return AllocationResult.failed(order_id, (sku,) if sku else (), reason, message=message)

        if not order_id:
            return fail(FailureReason.MISSING_ORDER_ID, "order_id is required")
        if not sku:
            return fail(FailureReason.MISSING_SKU, "sku is required")
        quantity = _as_decimal(qty)
        if quantity is None or quantity <= 0:
            return fail(FailureReason.INVALID_QUANTITY, f"quantity must be positive, got {qty!r}")
        if shipped_at is None:
            return fail(FailureReason.MISSING_SHIPPED_AT, "shipped_at is required")
        if _as_method(method, self._config.default_method) is None:
            return fail(FailureReason.INVALID_METHOD, f"unknown costing method {method!r}")
        if (
            self._config.require_registered_skus
            and not self._catalog.item_exists(sku)
            and not self._catalog.is_bundle(sku)
        ):
            return fail(FailureReason.SKU_NOT_FOUND, f"SKU {sku} not found in inventory items")
        return None

    # =========================================================================
    # Returns and corrections
    # =========================================================================

    def apply_return_reverse_cogs(
        self,
        order_id: str,
        sku: str,
        return_qty: Decimal,
        return_date: date | datetime,
        method: CostingMethod | str | None = None,
        return_id: str | None = None,
    ) -> bool:
        """
        Reverse COGS for returned units (Method B weighted average).

        With ``return_id`` the stock is received back as a RETURN layer and
        the call is idempotent per (return_id, sku).  Without it (order
        cancellation, admin correction) the units go back to the layers the
        shipment consumed.  ``method`` is validated but the reversal cost is
        always the batch's weighted average.
        """
        with self._context("apply_return_reverse_cogs", order_id=order_id, sku=sku):
            quantity = _as_decimal(return_qty)
            if (
                not (order_id or "").strip()
                or not (sku or "").strip()
                or quantity is None
                or quantity <= 0
                or return_date is None
                or _as_method(method, self._config.default_method) is None
            ):
                logger.warning(
                    "return_reversal_rejected",
                    extra={"return_qty": str(return_qty), "method": str(method)},
                )
                return False

            try:
                ok = self._reversals.apply_return(
                    order_id.strip(), sku.strip(), quantity, return_date, return_id
                )
                if ok:
                    self._session.commit()
                else:
                    self._session.rollback()
                return ok
            except CostingKernelError as exc:
                self._session.rollback()
                logger.warning(
                    "return_reversal_refused",
                    extra={"rev_order_id": order_id, "rev_sku": sku, "error_code": exc.code},
                )
                return False
            except Exception:
                self._rollback_and_log("return_reversal_failed", rev_order_id=order_id, rev_sku=sku)
                raise

    def clear_order_allocations(self, order_id: str, reason: str) -> int:
        """Admin: reverse every active allocation of an order; returns lines reversed."""
        with self._context("clear_order_allocations", order_id=order_id):
            try:
                count = self._reversals.clear_order(order_id, reason)
                self._session.commit()
                return count
            except Exception:
                self._rollback_and_log("order_clear_failed", rev_order_id=order_id)
                raise

    def amend_opening_balance(
        self,
        layer_id: UUID,
        qty: Decimal,
        unit_cost: Decimal,
        on_date: date | datetime,
    ) -> LayerActionResult:
        with self._context("amend_opening_balance"):
            return self._layer_action(
                "amend",
                layer_id,
                lambda: self._layers.amend(
                    layer_id, _as_decimal(qty), _as_decimal(unit_cost), on_date
                ),
            )

    def void_layer(self, layer_id: UUID, reason: str) -> LayerActionResult:
        with self._context("void_layer"):
            return self._layer_action(
                "void", layer_id, lambda: self._layers.void(layer_id, reason)
            )

    def void_layer_with_reversal(self, layer_id: UUID, reason: str) -> LayerActionResult:
        with self._context("void_layer_with_reversal"):
            try:
                result = self._layers.void_with_reversal(layer_id, reason, self._reversals)
                self._session.commit()
                return result
            except CostingKernelError as exc:
                self._session.rollback()
                logger.warning(
                    "layer_action_rejected",
                    extra={"action": "void_with_reversal", "layer_id": str(layer_id), "error_code": exc.code},
                )
                return LayerActionResult(success=False, layer_id=layer_id, message=str(exc))
            except Exception:
                self._rollback_and_log("layer_action_failed", action="void_with_reversal", layer_id=str(layer_id))
                raise

    def _layer_action(self, action: str, layer_id: UUID, fn) -> LayerActionResult:
        try:
            layer = fn()
            self._session.commit()
            return LayerActionResult(success=True, layer_id=layer.id)
        except CostingKernelError as exc:
            self._session.rollback()
            logger.warning(
                "layer_action_rejected",
                extra={"action": action, "layer_id": str(layer_id), "error_code": exc.code},
            )
            return LayerActionResult(success=False, layer_id=layer_id, message=str(exc))
        except Exception:
            self._rollback_and_log("layer_action_failed", action=action, layer_id=str(layer_id))
            raise

    # =========================================================================
    # Reporting
    # =========================================================================

    def compute_daily_cogs(self, day: date) -> Decimal:
        """Net COGS of one business day (2 dp, never negative)."""
        return self._allocations.daily_cogs(
            day,
            tz_name=self._config.business_timezone,
            places=self._config.daily_cogs_places,
        )

    def state_of(self, order_id: str, sku: str) -> AllocationState:
        return self._allocations.state_of(order_id, sku)
