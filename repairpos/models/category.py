"""Category model."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from repairpos.database import Base, IdType


class Category(Base):
    """Product Category."""

    __tablename__ = 'category'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"
