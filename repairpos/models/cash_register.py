"""Cash register session model (caja)."""
from sqlalchemy import Column, String, Numeric, DateTime, Enum, Text
from sqlalchemy.sql import func
from repairpos.database import Base, IdType
import enum


class CashRegisterStatus(enum.Enum):
    """Cash register status enum."""
    OPEN = "open"
    CLOSED = "closed"


class CashRegister(Base):
    """Cash register session. Sales require an open register."""

    __tablename__ = 'cash_register'

    id = Column(IdType, primary_key=True, autoincrement=True)
    status = Column(Enum(CashRegisterStatus, name='cash_register_status'), nullable=False,
                    default=CashRegisterStatus.OPEN)
    opened_by = Column(String(100), nullable=True)
    opening_amount = Column(Numeric(14, 2), nullable=False, default=0)
    expected_amount = Column(Numeric(14, 2), nullable=True)
    closing_amount = Column(Numeric(14, 2), nullable=True)
    difference = Column(Numeric(14, 2), nullable=True)
    notes = Column(Text, nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    closed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<CashRegister(id={self.id}, status={self.status.value})>"
