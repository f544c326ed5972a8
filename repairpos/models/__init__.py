"""Models package - exports all SQLAlchemy models."""
from repairpos.models.category import Category
from repairpos.models.supplier import Supplier
from repairpos.models.product import Product
from repairpos.models.stock_movement import StockMovement, StockMovementType
from repairpos.models.stock_alert import StockAlert, StockAlertType
from repairpos.models.customer import Customer
from repairpos.models.customer_credit import (
    CustomerCredit, CreditInstallment, CreditPayment,
    CreditStatus, InstallmentStatus, InstallmentFrequency
)
from repairpos.models.cash_register import CashRegister, CashRegisterStatus
from repairpos.models.sale import Sale, SaleStatus, PaymentStatus
from repairpos.models.sale_line import SaleLine
from repairpos.models.sale_payment import SalePayment
from repairpos.models.repair_order import RepairOrder, RepairStatus

__all__ = [
    'Category', 'Supplier', 'Product',
    'StockMovement', 'StockMovementType', 'StockAlert', 'StockAlertType',
    'Customer', 'CustomerCredit', 'CreditInstallment', 'CreditPayment',
    'CreditStatus', 'InstallmentStatus', 'InstallmentFrequency',
    'CashRegister', 'CashRegisterStatus',
    'Sale', 'SaleStatus', 'PaymentStatus', 'SaleLine', 'SalePayment',
    'RepairOrder', 'RepairStatus',
]
