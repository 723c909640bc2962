"""
Order state machine tests.

Guards against:
1. Transitions outside the legal-next-states table slipping through
2. Lost updates when two writers race on the same order
3. Missing lifecycle stamps / audit events
"""
from itertools import product
from unittest.mock import patch

import pytest

from fulfillment.domain.errors import ConcurrentModification, IllegalTransition, NotFound
from fulfillment.domain.status import TERMINAL_STATUSES, TRANSITIONS, OrderStatus, legal_next_states
from fulfillment.repos.order_repo import OrderRepo
from fulfillment.services.state_machine import OrderStateMachine


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

def test_terminal_states_are_delivered_and_cancelled():
    assert TERMINAL_STATUSES == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def test_unknown_status_has_no_successors():
    assert legal_next_states("teleported") == frozenset()


@pytest.mark.parametrize("current,target", list(product(OrderStatus, OrderStatus)))
def test_validate_matches_transition_table(current, target):
    if target in TRANSITIONS[current]:
        assert OrderStateMachine.validate(current, target) is target
    else:
        with pytest.raises(IllegalTransition) as exc:
            OrderStateMachine.validate(current, target)
        assert exc.value.allowed == {s.value for s in TRANSITIONS[current]}


def test_validate_narrowed_by_allowed_set():
    with pytest.raises(IllegalTransition):
        OrderStateMachine.validate(OrderStatus.PREPARING, OrderStatus.CANCELLED, allowed={OrderStatus.PENDING})


# ---------------------------------------------------------------------------
# request_transition
# ---------------------------------------------------------------------------

def test_transition_writes_status_version_and_event(db, make_order):
    order = make_order()
    sm = OrderStateMachine(db)

    result = sm.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin", note="ok")

    assert result.from_status is OrderStatus.PENDING
    assert result.to_status is OrderStatus.CONFIRMED
    assert result.order.status == "confirmed"
    assert result.order.version == 2
    assert result.order.updated_by == "admin"

    events = OrderRepo(db).list_events(order.id)
    assert [(e.event_type, e.from_status, e.to_status, e.actor) for e in events] == [
        ("status_changed", "pending", "confirmed", "admin")
    ]


def test_illegal_transition_leaves_order_unchanged(db, make_order):
    order = make_order(status="pending")

    with pytest.raises(IllegalTransition):
        OrderStateMachine(db).request_transition(order.id, OrderStatus.DELIVERED, actor="admin")

    fresh = OrderRepo(db).get_order(order.id)
    assert fresh.status == "pending"
    assert fresh.version == 1
    assert OrderRepo(db).list_events(order.id) == []


def test_same_state_transition_is_rejected(db, make_order):
    order = make_order(status="pending")
    sm = OrderStateMachine(db)
    sm.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")

    with pytest.raises(IllegalTransition):
        sm.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")


def test_delivered_and_cancelled_are_stamped(db, make_order):
    sm = OrderStateMachine(db)

    ready = make_order(status="ready")
    delivered = sm.request_transition(ready.id, OrderStatus.DELIVERED, actor="driver").order
    assert delivered.delivered_at is not None

    pending = make_order(status="pending")
    cancelled = sm.request_transition(pending.id, OrderStatus.CANCELLED, actor="admin").order
    assert cancelled.cancelled_at is not None
    assert cancelled.cancelled_by == "admin"


def test_missing_order_raises_not_found(db):
    with pytest.raises(NotFound):
        OrderStateMachine(db).request_transition("nope", OrderStatus.CONFIRMED, actor="admin")


def test_conflict_is_retried_against_fresh_read(db, make_order):
    order = make_order()
    sm = OrderStateMachine(db, max_attempts=3)
    real_update = sm.repo.update_status_if_current
    calls = []

    def flaky(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            return 0
        return real_update(**kwargs)

    with patch.object(sm.repo, "update_status_if_current", side_effect=flaky):
        result = sm.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")

    assert len(calls) == 2
    assert result.order.status == "confirmed"


def test_concurrent_writer_makes_stale_target_illegal(db, make_order):
    """Another writer cancels the order between our read and our write."""
    order = make_order(status="pending")
    sm = OrderStateMachine(db, max_attempts=3)
    real_update = sm.repo.update_status_if_current
    state = {"raced": False}

    def racing(**kwargs):
        if not state["raced"]:
            state["raced"] = True
            real_update(
                order_id=order.id,
                old_version=1,
                old_status="pending",
                new_data={"status": "cancelled"},
            )
            db.commit()
            return 0
        return real_update(**kwargs)

    with patch.object(sm.repo, "update_status_if_current", side_effect=racing):
        with pytest.raises(IllegalTransition):
            sm.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")

    assert OrderRepo(db).get_order(order.id).status == "cancelled"


def test_conflict_exhaustion_raises_concurrent_modification(db, make_order):
    order = make_order()
    sm = OrderStateMachine(db, max_attempts=2)

    with patch.object(sm.repo, "update_status_if_current", return_value=0):
        with pytest.raises(ConcurrentModification):
            sm.request_transition(order.id, OrderStatus.CONFIRMED, actor="admin")

    assert OrderRepo(db).get_order(order.id).status == "pending"
