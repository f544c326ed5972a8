"""Stock Movement model."""
from sqlalchemy import Column, Integer, String, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from repairpos.database import Base, IdType
import enum


class StockMovementType(enum.Enum):
    """Stock movement type enum."""
    ENTRADA = "entrada"
    SALIDA = "salida"
    AJUSTE = "ajuste"


class StockMovement(Base):
    """Stock Movement (movimiento de stock). Append-only audit record."""

    __tablename__ = 'stock_movement'

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    type = Column(Enum(StockMovementType, name='stock_movement_type'), nullable=False)
    quantity = Column(Integer, nullable=False)  # signed delta applied to stock
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    reference = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product', back_populates='movements')

    def __repr__(self):
        return f"<StockMovement(id={self.id}, type={self.type.value}, quantity={self.quantity})>"

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'type': self.type.value,
            'quantity': self.quantity,
            'previous_stock': self.previous_stock,
            'new_stock': self.new_stock,
            'reason': self.reason,
            'reference': self.reference,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
