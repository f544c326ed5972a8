"""Supplier model."""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func
from repairpos.database import Base, IdType


class Supplier(Base):
    """Supplier (proveedor de repuestos y accesorios)."""

    __tablename__ = 'supplier'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Supplier(id={self.id}, name='{self.name}')>"
