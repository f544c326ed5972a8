"""Sale model."""
from sqlalchemy import Column, String, Text, Boolean, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.sql import func
from repairpos.database import Base, IdType
import enum


class SaleStatus(enum.Enum):
    """Sale status enum."""
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    """Payment status for cuenta corriente."""
    PAID = 'paid'
    PENDING = 'pending'
    PARTIAL = 'partial'


class Sale(Base):
    """Sale (venta confirmada)."""

    __tablename__ = 'sale'

    id = Column(IdType, primary_key=True, autoincrement=True)
    datetime = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    customer_id = Column(IdType, ForeignKey('customer.id'), nullable=True)
    cash_register_id = Column(IdType, ForeignKey('cash_register.id'), nullable=True)

    subtotal = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    wholesale_discount_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    tax_amount = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    repair_cost = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    total = Column(Numeric(14, 2), nullable=False)
    is_wholesale = Column(Boolean, nullable=False, default=False, server_default='false')

    # cash | card | transfer | credit | mixed
    payment_method = Column(String(20), nullable=False)
    amount_tendered = Column(Numeric(14, 2), nullable=True)
    change_amount = Column(Numeric(14, 2), nullable=True)
    status = Column(Enum(SaleStatus, name='sale_status'), nullable=False, default=SaleStatus.CONFIRMED)
    payment_status = Column(String(20), default='paid', nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')

    # Idempotency key to prevent duplicate sales on double-submit
    idempotency_key = Column(String(64), unique=True, nullable=True, index=True)

    # Set when a post-sale step failed and stock/repairs must be fixed by hand
    # Linked repairs delivered and/or priced by this sale
    repairs_finalized = Column(Boolean, nullable=False, default=False, server_default='false')

    needs_reconciliation = Column(Boolean, nullable=False, default=False, server_default='false')
    reconciliation_notes = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='sales')
    lines = relationship('SaleLine', back_populates='sale', cascade='all, delete-orphan')
    payments = relationship('SalePayment', back_populates='sale', cascade='all, delete-orphan')
    repairs = relationship('RepairOrder', back_populates='sale')

    @hybrid_property
    def amount_due(self):
        """Amount still owed: total - amount_paid."""
        return (self.total or 0) - (self.amount_paid or 0)

    def __repr__(self):
        return f"<Sale(id={self.id}, total={self.total}, status={self.status.value})>"
