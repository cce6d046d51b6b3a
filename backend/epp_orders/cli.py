# Overview: Flask CLI command groups for workflow administration, approvals, installments, and order numbers.

# backend/epp_orders/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv and install the package (pip install -e .).
# - Use: flask --app epp_orders <group> <command> [options]
#
# Schema:
# - flask --app epp_orders db upgrade
#   Apply migrations (Flask-Migrate).
#
# Workflow administration:
# - flask workflows list
#   List active workflows with their bounds and levels.
# - flask workflows create --name "Standard" --min 0 --max 500000 --level MANAGER --level HR:hr@company.com
#   Create a workflow; each --level is ROLE or ROLE:email, in level order. Amounts are cents.
# - flask workflows add-level 1 FINANCE --email finance@company.com
#   Append the next level to a workflow.
# - flask workflows deactivate 1
#   Stop matching new orders against a workflow.
#
# Approvals:
# - flask approvals process 12 APPROVED --comments "ok"
#   Decide an approval (APPROVED or REJECTED).
# - flask approvals reset 12
#   Administrative reopen of an APPROVED approval.
# - flask approvals pending manager@company.com
#   List approvals waiting on an approver.
#
# Installments / payroll:
# - flask installments due --date 2026-01-31
#   List PENDING installments whose cutoff is on or before the date.
# - flask installments mark-deducted 7 --batch PR-2026-01B --reference REF-123
#   Mark an installment deducted and record it in the ledger.
#
# Orders:
# - flask orders number [--date 2026-01-31] [--allocate]
#   Preview (or reserve with --allocate) the next order number for a day.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import InsufficientStockError, OrderEngineError
from .services import approval_service
from .services import installment_service
from .services import order_number_service
from .services import workflow_service
from .services.mail import format_cents
from .time_utils import as_date


def _fail(exc: OrderEngineError):
    current_app.logger.error("%s: %s", exc.code, exc)
    raise click.ClickException(str(exc))


def _amount(cents):
    return "-" if cents is None else format_cents(cents)


# =============================================================================
# WORKFLOWS
# =============================================================================

@click.group('workflows')
def workflows_group():
    """Approval workflow administration."""


@workflows_group.command('list')
@with_appcontext
def list_workflows():
    """List active workflows in matching order."""
    workflows = workflow_service.list_active_workflows()
    if not workflows:
        click.echo("No active workflows found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Name':<28} {'Min':>12} {'Max':>12} {'Inst.':<6} {'Levels'}")
    click.echo("=" * 80)
    for wf in workflows:
        levels = " > ".join(lv.role for lv in wf.levels) or "-"
        click.echo(
            f"{wf.id:<5} {wf.name:<28} {_amount(wf.min_order_amount_cents):>12} "
            f"{_amount(wf.max_order_amount_cents):>12} {'yes' if wf.requires_installment else 'no':<6} {levels}"
        )
    click.echo("=" * 80 + "\n")


def _parse_level(raw: str) -> dict:
    role, _, email = raw.partition(":")
    level = {"role": role.strip().upper()}
    if email.strip():
        level["approver_email"] = email.strip()
    return level


@workflows_group.command('create')
@click.option('--name', required=True, help='Workflow name (unique)')
@click.option('--description', default=None, help='Description')
@click.option('--min', 'min_cents', type=int, default=None, help='Minimum order total in cents (inclusive)')
@click.option('--max', 'max_cents', type=int, default=None, help='Maximum order total in cents (inclusive)')
@click.option('--requires-installment', is_flag=True, help='Only match INSTALLMENT orders')
@click.option('--level', 'levels', multiple=True, help='ROLE or ROLE:email, repeat in level order')
@with_appcontext
def create_workflow(name, description, min_cents, max_cents, requires_installment, levels):
    """Create a workflow with its approval levels."""
    try:
        workflow = workflow_service.create_workflow(
            name,
            description=description,
            min_order_amount_cents=min_cents,
            max_order_amount_cents=max_cents,
            requires_installment=requires_installment,
            levels=[_parse_level(raw) for raw in levels],
        )
    except OrderEngineError as exc:
        _fail(exc)
    click.echo(f"PASS Created workflow: {workflow.name} (ID: {workflow.id}, levels: {len(workflow.levels)})")


@workflows_group.command('add-level')
@click.argument('workflow_id', type=int)
@click.argument('role')
@click.option('--level', 'level_number', type=int, default=None, help='Level number (defaults to the next one)')
@click.option('--approver-id', default=None)
@click.option('--approver-name', default=None)
@click.option('--email', 'approver_email', default=None, help='Pinned approver email')
@with_appcontext
def add_level(workflow_id, role, level_number, approver_id, approver_name, approver_email):
    """Append an approval level to a workflow."""
    try:
        if level_number is None:
            level_number = len(workflow_service.get_workflow(workflow_id).levels) + 1
        level = workflow_service.add_workflow_level(
            workflow_id,
            level_number,
            role,
            approver_id=approver_id,
            approver_name=approver_name,
            approver_email=approver_email,
        )
    except OrderEngineError as exc:
        _fail(exc)
    click.echo(f"PASS Added level {level.level} ({level.role}) to workflow {workflow_id}")


@workflows_group.command('deactivate')
@click.argument('workflow_id', type=int)
@with_appcontext
def deactivate(workflow_id):
    """Deactivate a workflow."""
    try:
        workflow = workflow_service.deactivate_workflow(workflow_id)
    except OrderEngineError as exc:
        _fail(exc)
    click.echo(f"PASS Deactivated workflow: {workflow.name} (ID: {workflow.id})")


# =============================================================================
# APPROVALS
# =============================================================================

@click.group('approvals')
def approvals_group():
    """Approval processing."""


@approvals_group.command('process')
@click.argument('approval_id', type=int)
@click.argument('decision', type=click.Choice(['APPROVED', 'REJECTED'], case_sensitive=False))
@click.option('--comments', default=None)
@with_appcontext
def process(approval_id, decision, comments):
    """Approve or reject one approval level."""
    try:
        outcome = approval_service.process_approval_with_outcome(approval_id, decision, comments)
    except InsufficientStockError as exc:
        for entry in exc.to_dict()["errors"]:
            click.echo(f"FAIL {entry['message']}")
        _fail(exc)
    except OrderEngineError as exc:
        _fail(exc)

    click.echo(
        f"PASS Approval {outcome.approval.id} {outcome.approval.status}; "
        f"order {outcome.order.order_number} is {outcome.order.status}"
    )
    if outcome.notification is not None and not outcome.notification.ok:
        click.echo(f"WARN Notification failed: {outcome.notification.error}")


@approvals_group.command('reset')
@click.argument('approval_id', type=int)
@click.option('--comments', default=None)
@with_appcontext
def reset(approval_id, comments):
    """Reopen an APPROVED approval (administrative)."""
    try:
        approval = approval_service.reset_approval(approval_id, comments=comments)
    except OrderEngineError as exc:
        _fail(exc)
    click.echo(f"PASS Approval {approval.id} (level {approval.approval_level}) reset to {approval.status}")


@approvals_group.command('pending')
@click.argument('approver_email')
@with_appcontext
def pending(approver_email):
    """List approvals waiting on an approver."""
    approvals = approval_service.get_pending_approvals_for_approver(approver_email)
    if not approvals:
        click.echo(f"No pending approvals for {approver_email}.")
        return
    for approval in approvals:
        order = approval.order
        click.echo(
            f"{approval.id:<6} {order.order_number:<24} level {approval.approval_level} "
            f"({approval.approver_role})  total {format_cents(order.total_cents)}"
        )


# =============================================================================
# INSTALLMENTS
# =============================================================================

@click.group('installments')
def installments_group():
    """Payroll installment operations."""


@installments_group.command('due')
@click.option('--date', 'cutoff', default=None, help='Cutoff date YYYY-MM-DD (default today)')
@with_appcontext
def due(cutoff):
    """List installments due for payroll deduction."""
    try:
        installments = installment_service.get_pending_installments_for_payroll(as_date(cutoff))
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint='--date')
    if not installments:
        click.echo("No installments due.")
        return
    total = 0
    for inst in installments:
        total += inst.amount_cents
        click.echo(
            f"{inst.id:<6} {inst.order.order_number:<24} #{inst.installment_number:<3} "
            f"{format_cents(inst.amount_cents):>12}  cutoff {inst.cut_off_date.isoformat()}  "
            f"employee {inst.order.employee_id}"
        )
    click.echo(f"\n{len(installments)} installment(s), total {format_cents(total)}")


@installments_group.command('mark-deducted')
@click.argument('installment_id', type=int)
@click.option('--batch', 'payroll_batch_id', default=None, help='Payroll batch id')
@click.option('--reference', 'deduction_reference', default=None, help='Deduction reference')
@with_appcontext
def mark_deducted(installment_id, payroll_batch_id, deduction_reference):
    """Mark an installment as deducted by payroll."""
    try:
        inst = installment_service.mark_installment_deducted(installment_id, payroll_batch_id, deduction_reference)
    except OrderEngineError as exc:
        _fail(exc)
    click.echo(f"PASS Installment {inst.id} marked {inst.status} ({format_cents(inst.amount_cents)})")


# =============================================================================
# ORDERS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order utilities."""


@orders_group.command('number')
@click.option('--date', 'day', default=None, help='Date YYYY-MM-DD (default today)')
@click.option('--allocate', is_flag=True, help='Reserve the number instead of previewing it')
@with_appcontext
def number(day, allocate):
    """Preview or reserve the next order number."""
    try:
        target = as_date(day)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint='--date')
    try:
        if allocate:
            click.echo(order_number_service.allocate_order_number(target))
        else:
            click.echo(order_number_service.generate_order_number(target))
    except OrderEngineError as exc:
        _fail(exc)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(workflows_group)
    app.cli.add_command(approvals_group)
    app.cli.add_command(installments_group)
    app.cli.add_command(orders_group)
