"""Sale Payment model for mixed payment methods."""
from sqlalchemy import Column, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from repairpos.database import Base, IdType


class SalePayment(Base):
    """
    Sale Payment - Individual payment for a sale.

    Allows mixed payment methods (e.g., cash + card + transfer).
    Multiple payments can be associated with a single sale.
    """

    __tablename__ = 'sale_payment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sale_id = Column(IdType, ForeignKey('sale.id', ondelete='CASCADE'), nullable=False, index=True)

    payment_method = Column(String(20), nullable=False)  # cash, card, transfer, credit
    amount = Column(Numeric(14, 2), nullable=False)
    reference = Column(String(100))  # Transfer reference
    card_last4 = Column(String(4))

    # Only for cash payments
    amount_received = Column(Numeric(14, 2))  # Amount given by customer
    change_amount = Column(Numeric(14, 2))    # Change returned

    # Relationships
    sale = relationship('Sale', back_populates='payments')

    def __repr__(self):
        return f"<SalePayment(id={self.id}, sale_id={self.sale_id}, method={self.payment_method}, amount={self.amount})>"
