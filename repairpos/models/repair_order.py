"""Repair order model (orden de reparación)."""
from sqlalchemy import Column, String, Text, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from repairpos.database import Base, IdType
import enum


class RepairStatus(enum.Enum):
    """Repair workflow status."""
    RECEIVED = "received"
    DIAGNOSIS = "diagnosis"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RepairOrder(Base):
    """Repair work-order that may be charged at the POS."""

    __tablename__ = 'repair_order'

    id = Column(IdType, primary_key=True, autoincrement=True)
    customer_id = Column(IdType, ForeignKey('customer.id'), nullable=True, index=True)
    device = Column(String(200), nullable=False)
    issue = Column(Text, nullable=True)
    status = Column(Enum(RepairStatus, name='repair_status'), nullable=False, default=RepairStatus.RECEIVED)
    estimated_cost = Column(Numeric(14, 2), nullable=True)
    labor_cost = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    parts_cost = Column(Numeric(14, 2), nullable=False, default=0, server_default='0')
    final_cost = Column(Numeric(14, 2), nullable=True)
    sale_id = Column(IdType, ForeignKey('sale.id'), nullable=True)
    credit_id = Column(IdType, ForeignKey('customer_credit.id'), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    customer = relationship('Customer', back_populates='repairs')
    sale = relationship('Sale', back_populates='repairs')
    credit = relationship('CustomerCredit', back_populates='repairs')

    def __repr__(self):
        return f"<RepairOrder(id={self.id}, device='{self.device}', status={self.status.value})>"
