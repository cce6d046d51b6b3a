from .catalog import Item, StockMovement
from .orders import Order, OrderLine, OrderNumberSequence
from .workflows import ApprovalWorkflow, WorkflowApprovalLevel, OrderApproval
from .payments import Transaction, Installment
from .notifications import Notification

__all__ = [
    'Item', 'StockMovement',
    'Order', 'OrderLine', 'OrderNumberSequence',
    'ApprovalWorkflow', 'WorkflowApprovalLevel', 'OrderApproval',
    'Transaction', 'Installment',
    'Notification',
]
