"""Customer model."""
from sqlalchemy import Column, String, Text, Numeric, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from repairpos.database import Base, IdType


class Customer(Base):
    """Customer (cliente)."""

    __tablename__ = 'customer'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    is_wholesale = Column(Boolean, nullable=False, default=False, server_default='false')
    # Cuenta corriente
    credit_limit = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    current_balance = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    active = Column(Boolean, nullable=False, default=True, server_default='true')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    sales = relationship('Sale', back_populates='customer')
    credits = relationship('CustomerCredit', back_populates='customer')
    repairs = relationship('RepairOrder', back_populates='customer')

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.name}', credit_limit={self.credit_limit})>"
