"""Product model."""
from sqlalchemy import Column, String, Boolean, Integer, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from repairpos.database import Base, IdType


class Product(Base):
    """Product (repuesto, accesorio o servicio)."""

    __tablename__ = 'product'
    __table_args__ = (
        CheckConstraint('stock_quantity >= 0', name='ck_product_stock_non_negative'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    sku = Column(String, nullable=True, unique=True)
    name = Column(String, nullable=False)
    category_id = Column(IdType, ForeignKey('category.id'), nullable=True)
    supplier_id = Column(IdType, ForeignKey('supplier.id'), nullable=True)
    sale_price = Column(Numeric(14, 2), nullable=False)
    purchase_price = Column(Numeric(14, 2), nullable=False, default=0, server_default='0.00')
    wholesale_price = Column(Numeric(14, 2), nullable=True)
    # Mutated only through stock_service.apply_movement
    stock_quantity = Column(Integer, nullable=False, default=0, server_default='0')
    min_stock = Column(Integer, nullable=False, default=0, server_default='0')
    max_stock = Column(Integer, nullable=True)
    is_service = Column(Boolean, nullable=False, default=False, server_default='false')
    is_active = Column(Boolean, nullable=False, default=True, server_default='true')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    category = relationship('Category', foreign_keys=[category_id])
    supplier = relationship('Supplier', foreign_keys=[supplier_id])
    movements = relationship('StockMovement', back_populates='product', order_by='StockMovement.id')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"

    def to_cart_item(self, quantity: int) -> dict:
        """Build a checkout cart item from this product."""
        return {
            'id': self.id,
            'name': self.name,
            'unit_price': str(self.sale_price),
            'wholesale_unit_price': str(self.wholesale_price) if self.wholesale_price is not None else None,
            'quantity': int(quantity),
            'is_service': bool(self.is_service),
        }
