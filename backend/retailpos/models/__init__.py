from .catalog import Product, BranchStock, StockMovement
from .customers import Customer, CustomerRewardAccount, CustomerRewardTransaction
from .promotions import Promotion
from .transactions import Transaction, TransactionItem
from .documents import HeldTransaction, Refund

__all__ = [
    'Product', 'BranchStock', 'StockMovement',
    'Customer', 'CustomerRewardAccount', 'CustomerRewardTransaction',
    'Promotion',
    'Transaction', 'TransactionItem',
    'HeldTransaction', 'Refund',
]
