"""
Approval chain construction tests.
"""

import pytest

from epp_orders.errors import ConflictError
from epp_orders.extensions import db
from epp_orders.models import Order, OrderApproval
from epp_orders.services import approval_chain_service
from epp_orders.services.approver_resolution import RoleTableApproverResolver, WorkflowLevelApproverResolver


def test_chain_has_one_pending_approval_per_level(db_session, make_item, make_workflow, make_order, outbox):
    make_workflow(levels=("MANAGER:boss@example.com", "HR", "FINANCE"))
    item = make_item(stock=5)

    result = make_order([{"item_id": item.id, "quantity": 1}], notes="For onboarding")
    chain = result.approval_chain

    assert chain is not None
    assert [a.approval_level for a in chain.approvals] == [1, 2, 3]
    assert all(a.status == "PENDING" for a in chain.approvals)
    assert [a.approver_role for a in chain.approvals] == ["MANAGER", "HR", "FINANCE"]
    assert result.order.workflow_id == chain.workflow.id
    assert result.order.current_approval_level == 1


def test_only_first_approver_is_notified(db_session, make_item, make_workflow, make_order, outbox):
    make_workflow(levels=("MANAGER:boss@example.com", "HR:hr@example.com"))
    item = make_item(stock=5)

    result = make_order([{"item_id": item.id, "quantity": 1}])

    assert len(outbox.sent) == 1
    message = outbox.sent[0]
    assert message["to"] == ["boss@example.com"]
    assert message["subject"] == f"Approval Required: Order {result.order.order_number}"
    assert result.notification.ok


def test_explicit_email_wins_then_role_table(db_session, app, make_item, make_workflow, make_order):
    make_workflow(levels=("MANAGER:boss@example.com", "HR"))
    item = make_item(stock=5)

    chain = make_order([{"item_id": item.id, "quantity": 1}]).approval_chain

    assert chain.approvals[0].approver_email == "boss@example.com"
    assert chain.approvals[1].approver_email == app.config["ROLE_APPROVERS"]["HR"]["email"]


def test_unknown_role_falls_back_to_manager_entry(app):
    resolver = RoleTableApproverResolver({"MANAGER": {"id": "m1", "name": "Mgr", "email": "mgr@example.com"}})
    approver = resolver.resolve_role("FINANCE")
    assert approver.email == "mgr@example.com"
    assert approver.source == "role-based"


def test_invalid_email_is_warned_not_rejected(db_session, make_item, make_workflow, make_order, outbox):
    make_workflow(levels=("MANAGER",))
    item = make_item(stock=5)
    resolver = WorkflowLevelApproverResolver(RoleTableApproverResolver({"MANAGER": {"name": "Nobody", "email": "not-an-email"}}))

    result = make_order([{"item_id": item.id, "quantity": 1}], resolver=resolver)

    assert len(result.approval_chain.approvals) == 1
    assert result.approval_chain.warnings
    assert result.notification is not None
    assert not result.notification.ok
    assert outbox.sent == []


def test_no_matching_workflow_leaves_order_unrouted(db_session, make_item, make_workflow, make_order, outbox):
    make_workflow(min_order_amount_cents=10_000_000)
    item = make_item(stock=5)

    result = make_order([{"item_id": item.id, "quantity": 1}])

    assert result.approval_chain is None
    assert not result.is_routed
    assert result.order.workflow_id is None
    assert db.session.query(OrderApproval).count() == 0
    assert outbox.sent == []


def test_workflow_without_levels_returns_none(db_session, make_item, make_workflow, make_order):
    make_workflow(levels=())
    item = make_item(stock=5)

    assert make_order([{"item_id": item.id, "quantity": 1}]).approval_chain is None


def test_second_chain_for_same_order_conflicts(db_session, make_item, standard_workflow, make_order):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 1}]).order

    with pytest.raises(ConflictError):
        approval_chain_service.create_approval_chain(
            order.id,
            order_number=order.order_number,
            employee_id=order.employee_id,
            employee_name=order.employee_name,
            order_total_cents=order.total_cents,
            payment_type=order.payment_type,
        )
    assert db.session.query(OrderApproval).filter_by(order_id=order.id).count() == 2


def test_chain_for_existing_unrouted_order(db_session, make_item, make_order, make_workflow, outbox):
    item = make_item(stock=5)
    order = make_order([{"item_id": item.id, "quantity": 1}]).order
    make_workflow(levels=("MANAGER:boss@example.com",))

    chain = approval_chain_service.create_approval_chain(
        order.id,
        order_number=order.order_number,
        employee_id=order.employee_id,
        employee_name=order.employee_name,
        order_total_cents=order.total_cents,
        payment_type=order.payment_type,
        order_date=order.order_date,
    )

    assert [a.approval_level for a in chain.approvals] == [1]
    assert db.session.get(Order, order.id).workflow_id == chain.workflow.id
    assert outbox.sent[-1]["to"] == ["boss@example.com"]
