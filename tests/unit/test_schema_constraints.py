"""
Database-level guarantees: the constraints and partial unique indexes hold
even when a caller bypasses the services.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from cogs_kernel.domain.costing import CostingMethod, LayerRefType
from cogs_kernel.models.cogs_allocation import CogsAllocation
from cogs_kernel.models.cost_layer import CostLayer
from cogs_kernel.services.sequence_service import SequenceService

NOW = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def allocation_row(actor, line_no=1, **overrides):
    values = dict(
        order_id="ORD-1",
        sku="SKU-A",
        batch_id=uuid4(),
        line_no=line_no,
        shipped_at=NOW,
        method=CostingMethod.FIFO.value,
        qty=Decimal("1"),
        unit_cost_used=Decimal("1"),
        amount=Decimal("1"),
        is_reversal=False,
        created_at=NOW,
        created_by_id=actor,
    )
    values.update(overrides)
    return CogsAllocation(**values)


def return_layer(actor, seq, ref_id="RET-1", **overrides):
    values = dict(
        sku="SKU-A",
        received_at=NOW,
        qty_received=Decimal("1"),
        qty_remaining=Decimal("1"),
        unit_cost=Decimal("1"),
        ref_type=LayerRefType.RETURN.value,
        ref_id=ref_id,
        seq=seq,
        voided=False,
        created_at=NOW,
        created_by_id=actor,
        updated_at=NOW,
    )
    values.update(overrides)
    return CostLayer(**values)


class TestActiveAllocationIndex:

    def test_second_active_line_for_same_key_is_rejected(self, session, test_actor_id):
        session.add(allocation_row(test_actor_id))
        session.flush()
        session.add(allocation_row(test_actor_id))

        with pytest.raises(IntegrityError):
            session.flush()

    def test_reversed_line_frees_the_key(self, session, test_actor_id):
        session.add(allocation_row(test_actor_id, reversed_at=NOW))
        session.add(allocation_row(test_actor_id, is_reversal=True, qty=Decimal("-1"), amount=Decimal("-1")))
        session.add(allocation_row(test_actor_id))
        session.flush()

    def test_zero_quantity_rejected(self, session, test_actor_id):
        session.add(allocation_row(test_actor_id, qty=Decimal("0")))

        with pytest.raises(IntegrityError):
            session.flush()


class TestReturnLayerIndex:

    def test_one_active_return_layer_per_return_and_sku(self, session, test_actor_id):
        session.add(return_layer(test_actor_id, seq=1))
        session.flush()
        session.add(return_layer(test_actor_id, seq=2))

        with pytest.raises(IntegrityError):
            session.flush()

    def test_voided_return_layer_does_not_block(self, session, test_actor_id):
        session.add(return_layer(test_actor_id, seq=1, voided=True))
        session.add(return_layer(test_actor_id, seq=2))
        session.flush()

    def test_remaining_cannot_exceed_received(self, session, test_actor_id):
        session.add(return_layer(test_actor_id, seq=1, qty_remaining=Decimal("2")))

        with pytest.raises(IntegrityError):
            session.flush()


class TestSequenceService:

    def test_values_are_monotonic_per_name(self, session):
        sequence = SequenceService(session)

        values = [sequence.next_value("cost_layer") for _ in range(3)]

        assert values == sorted(values)
        assert len(set(values)) == 3
        assert sequence.current_value("cost_layer") == values[-1]
        assert sequence.next_value("other") == 1
