"""Customer credit models: credit header, installments and payments."""
from sqlalchemy import Column, String, Text, Integer, Numeric, Date, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.sql import func
from repairpos.database import Base, IdType
import enum


class CreditStatus(enum.Enum):
    """Credit status enum."""
    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"


class InstallmentStatus(enum.Enum):
    """Installment status enum."""
    PENDING = "pending"
    PAID = "paid"
    LATE = "late"


class InstallmentFrequency(enum.Enum):
    """How often installments fall due."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class CustomerCredit(Base):
    """Credit obligation created by a sale charged to the customer's account."""

    __tablename__ = 'customer_credit'

    id = Column(IdType, primary_key=True, autoincrement=True)
    customer_id = Column(IdType, ForeignKey('customer.id'), nullable=False, index=True)
    sale_id = Column(IdType, ForeignKey('sale.id'), nullable=True)
    principal = Column(Numeric(14, 2), nullable=False)
    interest_rate = Column(Numeric(5, 2), nullable=False, default=0, server_default='0')
    installment_count = Column(Integer, nullable=False, default=1, server_default='1')
    frequency = Column(Enum(InstallmentFrequency, name='installment_frequency'), nullable=False,
                       default=InstallmentFrequency.MONTHLY)
    start_date = Column(Date, nullable=False)
    status = Column(Enum(CreditStatus, name='credit_status'), nullable=False, default=CreditStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='credits')
    installments = relationship('CreditInstallment', back_populates='credit',
                                cascade='all, delete-orphan', order_by='CreditInstallment.installment_number')
    payments = relationship('CreditPayment', back_populates='credit', cascade='all, delete-orphan')
    repairs = relationship('RepairOrder', back_populates='credit')

    def __repr__(self):
        return f"<CustomerCredit(id={self.id}, customer_id={self.customer_id}, principal={self.principal})>"


class CreditInstallment(Base):
    """Installment (cuota) of a customer credit."""

    __tablename__ = 'credit_installment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    credit_id = Column(IdType, ForeignKey('customer_credit.id', ondelete='CASCADE'), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    status = Column(Enum(InstallmentStatus, name='installment_status'), nullable=False,
                    default=InstallmentStatus.PENDING)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    credit = relationship('CustomerCredit', back_populates='installments')

    @hybrid_property
    def balance(self):
        """Amount still owed on this installment."""
        return (self.amount or 0) - (self.amount_paid or 0)

    def __repr__(self):
        return f"<CreditInstallment(id={self.id}, number={self.installment_number}, status={self.status.value})>"


class CreditPayment(Base):
    """Payment applied to a credit installment."""

    __tablename__ = 'credit_payment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    credit_id = Column(IdType, ForeignKey('customer_credit.id', ondelete='CASCADE'), nullable=False, index=True)
    installment_id = Column(IdType, ForeignKey('credit_installment.id'), nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    credit = relationship('CustomerCredit', back_populates='payments')

    def __repr__(self):
        return f"<CreditPayment(id={self.id}, credit_id={self.credit_id}, amount={self.amount})>"
