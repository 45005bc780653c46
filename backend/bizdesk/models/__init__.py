from .auth import User, SessionToken, LoginHistory, PushSubscription
from .inventory import Product, ProductActivity
from .customers import Client
from .sales import Sale, SaleLine, SalePayment, SaleModification, SaleModificationLine, DeletedSale
from .payroll import Employee, SalaryAdvance, PaySlip
from .finance import Expense, BankTransaction

__all__ = [
    'User', 'SessionToken', 'LoginHistory', 'PushSubscription',
    'Product', 'ProductActivity',
    'Client',
    'Sale', 'SaleLine', 'SalePayment', 'SaleModification', 'SaleModificationLine', 'DeletedSale',
    'Employee', 'SalaryAdvance', 'PaySlip',
    'Expense', 'BankTransaction',
]
