"""Stock Alert model."""
from sqlalchemy import Column, Integer, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from repairpos.database import Base, IdType
import enum


class StockAlertType(enum.Enum):
    """Stock alert type enum."""
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class StockAlert(Base):
    """Low/out-of-stock alert derived after each stock movement."""

    __tablename__ = 'stock_alert'

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    alert_type = Column(Enum(StockAlertType, name='stock_alert_type'), nullable=False)
    stock_quantity = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default='true')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    product = relationship('Product')

    def __repr__(self):
        return f"<StockAlert(product_id={self.product_id}, type={self.alert_type.value}, active={self.is_active})>"

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product.name if self.product else None,
            'alert_type': self.alert_type.value,
            'stock_quantity': self.stock_quantity,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
