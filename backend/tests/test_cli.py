"""
CLI smoke tests through Flask's test runner.
"""

import pytest

from epp_orders.models import ApprovalWorkflow, Order


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_workflow_create_and_list(db_session, runner):
    result = runner.invoke(args=[
        "workflows", "create", "--name", "Standard", "--min", "0", "--max", "500000",
        "--level", "manager:boss@example.com", "--level", "HR",
    ])
    assert result.exit_code == 0, result.output
    assert "PASS Created workflow: Standard" in result.output

    workflow = db_session.query(ApprovalWorkflow).filter_by(name="Standard").one()
    assert [(lv.level, lv.role, lv.approver_email) for lv in workflow.levels] == [
        (1, "MANAGER", "boss@example.com"),
        (2, "HR", None),
    ]

    listing = runner.invoke(args=["workflows", "list"])
    assert "Standard" in listing.output
    assert "MANAGER > HR" in listing.output


def test_duplicate_workflow_fails(db_session, runner, make_workflow):
    make_workflow(name="Standard")
    result = runner.invoke(args=["workflows", "create", "--name", "Standard", "--level", "MANAGER"])
    assert result.exit_code != 0


def test_process_approval_command(db_session, runner, make_item, standard_workflow, make_order):
    item = make_item(stock=3)
    created = make_order([{"item_id": item.id, "quantity": 1}])
    first, second = created.approval_chain.approvals

    result = runner.invoke(args=["approvals", "process", str(first.id), "approved", "--comments", "ok"])
    assert result.exit_code == 0, result.output
    assert "PENDING_APPROVAL" in result.output

    result = runner.invoke(args=["approvals", "process", str(second.id), "REJECTED"])
    assert result.exit_code == 0, result.output
    assert db_session.get(Order, created.order.id).status == "REJECTED"

    again = runner.invoke(args=["approvals", "process", str(second.id), "APPROVED"])
    assert again.exit_code != 0
    assert "already been processed" in again.output


def test_order_number_preview(db_session, runner):
    result = runner.invoke(args=["orders", "number", "--date", "2026-03-05"])
    assert result.exit_code == 0
    assert result.output.strip().splitlines()[-1] == "ORD-20260305-A0001"

    bad = runner.invoke(args=["orders", "number", "--date", "yesterday"])
    assert bad.exit_code != 0
