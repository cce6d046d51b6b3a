"""
Transition table tests for order and approval statuses.
"""

from types import SimpleNamespace

import pytest

from epp_orders.errors import InvalidTransitionError, ValidationError
from epp_orders.services import approval_states as states


@pytest.mark.parametrize("raw,expected", [
    ("APPROVED", "APPROVED"),
    ("rejected", "REJECTED"),
    ("  Approved ", "APPROVED"),
])
def test_validate_decision_normalizes(raw, expected):
    assert states.validate_decision(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "PENDING", "maybe"])
def test_validate_decision_rejects_unknown(raw):
    with pytest.raises(ValidationError):
        states.validate_decision(raw)


def test_order_machine():
    assert states.can_transition("order", "PENDING_APPROVAL", "APPROVED")
    assert states.can_transition("order", "APPROVED", "REJECTED")
    assert not states.can_transition("order", "REJECTED", "APPROVED")
    assert not states.can_transition("order", "APPROVED", "PENDING_APPROVAL")
    assert states.is_terminal("order", "REJECTED")
    assert not states.is_terminal("order", "APPROVED")


def test_approval_machine():
    assert states.can_transition("approval", "PENDING", "REJECTED")
    assert states.can_transition("approval", "APPROVED", "PENDING")
    assert not states.can_transition("approval", "REJECTED", "PENDING")
    assert states.is_terminal("approval", "REJECTED")


def test_transition_helpers_update_or_raise():
    order = SimpleNamespace(status="PENDING_APPROVAL")
    states.transition_order(order, "APPROVED")
    assert order.status == "APPROVED"

    approval = SimpleNamespace(status="REJECTED")
    with pytest.raises(InvalidTransitionError) as excinfo:
        states.transition_approval(approval, "APPROVED")
    assert approval.status == "REJECTED"
    assert excinfo.value.from_status == "REJECTED"
    assert excinfo.value.to_dict()["code"] == "INVALID_TRANSITION"
