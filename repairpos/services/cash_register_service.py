"""Cash register (caja) sessions. Sales can only be confirmed with an open register."""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repairpos.exceptions import BusinessLogicError, to_backend_error
from repairpos.models import CashRegister, CashRegisterStatus, Sale, SalePayment, SaleStatus
from repairpos.services.pricing_service import ZERO, round2, to_decimal

logger = logging.getLogger(__name__)


def get_open_register(session: Session) -> Optional[CashRegister]:
    return session.query(CashRegister).filter(
        CashRegister.status == CashRegisterStatus.OPEN
    ).order_by(CashRegister.id.desc()).first()


def is_register_open(session: Session) -> bool:
    return get_open_register(session) is not None


def open_register(session: Session, opening_amount=0, opened_by: Optional[str] = None) -> CashRegister:
    """
    Open a new register session.

    Raises:
        BusinessLogicError: if a register is already open or the amount is negative
    """
    amount = to_decimal(opening_amount, default=None)
    if amount is None or amount < 0:
        raise BusinessLogicError('El monto inicial debe ser mayor o igual a 0')
    if is_register_open(session):
        raise BusinessLogicError('Ya hay una caja abierta', status_code=409)

    try:
        register = CashRegister(
            status=CashRegisterStatus.OPEN,
            opened_by=opened_by,
            opening_amount=round2(amount)
        )
        session.add(register)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise to_backend_error(e) from e

    logger.info(f"[REGISTER] Register {register.id} opened with {register.opening_amount}")
    return register


def cash_taken(session: Session, register_id: int) -> Decimal:
    """Cash collected by confirmed sales of a register (net of change)."""
    total = session.query(func.coalesce(func.sum(SalePayment.amount), 0)).join(
        Sale, Sale.id == SalePayment.sale_id
    ).filter(
        Sale.cash_register_id == register_id,
        Sale.status == SaleStatus.CONFIRMED,
        SalePayment.payment_method == 'cash'
    ).scalar()
    return round2(total)


def close_register(session: Session, closing_amount, notes: Optional[str] = None) -> CashRegister:
    """
    Close the open register, recording expected vs counted cash.

    expected = opening amount + cash taken; difference = counted - expected.
    """
    register = get_open_register(session)
    if register is None:
        raise BusinessLogicError('No hay una caja abierta')

    counted = to_decimal(closing_amount, default=None)
    if counted is None or counted < 0:
        raise BusinessLogicError('El monto de cierre debe ser mayor o igual a 0')

    try:
        expected = round2(to_decimal(register.opening_amount) + cash_taken(session, register.id))
        register.expected_amount = expected
        register.closing_amount = round2(counted)
        register.difference = round2(counted) - expected
        register.notes = notes
        register.status = CashRegisterStatus.CLOSED
        register.closed_at = datetime.now(timezone.utc)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise to_backend_error(e) from e

    if register.difference != ZERO:
        logger.warning(f"[REGISTER] Register {register.id} closed with difference {register.difference}")
    else:
        logger.info(f"[REGISTER] Register {register.id} closed")
    return register


def register_to_dict(register: Optional[CashRegister]) -> dict:
    if register is None:
        return {'is_open': False}
    return {
        'is_open': register.status == CashRegisterStatus.OPEN,
        'id': register.id,
        'opened_by': register.opened_by,
        'opening_amount': str(register.opening_amount),
        'expected_amount': str(register.expected_amount) if register.expected_amount is not None else None,
        'closing_amount': str(register.closing_amount) if register.closing_amount is not None else None,
        'difference': str(register.difference) if register.difference is not None else None,
        'opened_at': register.opened_at.isoformat() if register.opened_at else None,
        'closed_at': register.closed_at.isoformat() if register.closed_at else None,
    }
