"""
Stock movement service.

Every change to a product's on-hand quantity goes through apply_movement:
a single conditional UPDATE at the database (so concurrent sales of the same
product serialize on the row and can never both read the same previous
stock), one append-only StockMovement record, and the low/out-of-stock
alert derived from the resulting quantity.

Underflow policy: a movement that would leave stock below zero is rejected
with StockConflictError. Nothing is clamped.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repairpos.blueprints import metrics
from repairpos.exceptions import (
    PosError, ValidationError, NotFoundError, StockConflictError, to_backend_error
)
from repairpos.models import Product, StockMovement, StockMovementType, StockAlert, StockAlertType
from repairpos.services.cache_service import get_cache, invalidate

logger = logging.getLogger(__name__)


def coerce_movement_type(value) -> StockMovementType:
    """Accept an enum member or its value ('entrada', 'salida', 'ajuste')."""
    if isinstance(value, StockMovementType):
        return value
    try:
        return StockMovementType(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f'Tipo de movimiento inválido: {value}')


def signed_delta(movement_type, quantity) -> int:
    """Signed change to stock: positive for entrada, negative for salida, as given for ajuste."""
    movement_type = coerce_movement_type(movement_type)
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError('La cantidad debe ser un número entero')

    if movement_type is StockMovementType.ENTRADA:
        return abs(qty)
    if movement_type is StockMovementType.SALIDA:
        return -abs(qty)
    return qty


def derive_alert_state(new_stock: int, min_stock: Optional[int]) -> Optional[StockAlertType]:
    """Alert implied by a stock level, or None when stock is healthy."""
    if new_stock <= 0:
        return StockAlertType.OUT_OF_STOCK
    if new_stock <= (min_stock or 0):
        return StockAlertType.LOW_STOCK
    return None


def _sync_alerts(session: Session, product: Product, new_stock: int) -> Optional[StockAlertType]:
    """Open, keep or resolve the product's alerts to match ``new_stock``."""
    state = derive_alert_state(new_stock, product.min_stock)
    active_alerts = session.query(StockAlert).filter(
        StockAlert.product_id == product.id,
        StockAlert.is_active == True  # noqa: E712
    ).all()

    kept = False
    for alert in active_alerts:
        if alert.alert_type == state and not kept:
            alert.stock_quantity = new_stock
            kept = True
        else:
            alert.is_active = False
            alert.resolved_at = datetime.now(timezone.utc)

    if state is not None and not kept:
        session.add(StockAlert(product_id=product.id, alert_type=state, stock_quantity=new_stock))
        logger.info(f"[STOCK] {state.value} alert opened for product {product.id} (stock={new_stock})")

    return state


def apply_movement(
    session: Session,
    product_id: int,
    quantity: int,
    movement_type,
    reason: str,
    reference: Optional[str] = None
) -> Dict[str, Any]:
    """
    Apply a stock movement and commit it.

    Args:
        session: SQLAlchemy session
        product_id: product to move
        quantity: magnitude for entrada/salida, signed delta for ajuste
        movement_type: StockMovementType or its value
        reason: human-readable reason (required)
        reference: optional external reference (e.g. 'VENTA-12')

    Returns:
        Dict with previous_stock, new_stock, signed_quantity, movement_id and alert.

    Raises:
        ValidationError: zero quantity, unknown type or missing reason
        NotFoundError: the product does not exist
        StockConflictError: the movement would leave stock below zero
        BackendUnavailableError: database failure (the movement is not applied)
    """
    movement_type = coerce_movement_type(movement_type)
    delta = signed_delta(movement_type, quantity)
    if delta == 0:
        raise ValidationError('La cantidad del movimiento no puede ser 0')
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('El motivo del movimiento es obligatorio')

    try:
        # Atomic conditional update: the row lock taken here serializes
        # concurrent movements of the same product.
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
            .values(stock_quantity=Product.stock_quantity + delta)
            .execution_options(synchronize_session=False)
        )

        product = session.query(Product).populate_existing().filter(Product.id == product_id).first()
        if product is None:
            raise NotFoundError(f'Producto {product_id} no encontrado')
        if result.rowcount != 1:
            logger.warning(
                f"[STOCK] Rejected {movement_type.value} of {delta} for product {product_id}: "
                f"stock is {product.stock_quantity}"
            )
            raise StockConflictError(product.name, abs(delta), product.stock_quantity)

        new_stock = product.stock_quantity
        previous_stock = new_stock - delta

        movement = StockMovement(
            product_id=product.id,
            type=movement_type,
            quantity=delta,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason=reason,
            reference=reference
        )
        session.add(movement)
        alert = _sync_alerts(session, product, new_stock)
        session.flush()
        movement_id = movement.id
        session.commit()

    except PosError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[STOCK] Database error applying movement to product {product_id}: {e}")
        raise to_backend_error(e) from e

    metrics.record_stock_movement(movement_type.value)
    invalidate('stock')

    return {
        'product_id': product_id,
        'movement_id': movement_id,
        'type': movement_type.value,
        'signed_quantity': delta,
        'previous_stock': previous_stock,
        'new_stock': new_stock,
        'alert': alert.value if alert else None,
    }


def _load_active_alerts(session: Session) -> List[Dict[str, Any]]:
    alerts = session.query(StockAlert).filter(
        StockAlert.is_active == True  # noqa: E712
    ).order_by(StockAlert.created_at.desc(), StockAlert.id.desc()).all()
    return [alert.to_dict() for alert in alerts]


def list_active_alerts(session: Session) -> List[Dict[str, Any]]:
    """Active low/out-of-stock alerts, newest first (cached briefly)."""
    try:
        cache = get_cache()
    except RuntimeError:
        return _load_active_alerts(session)
    return cache.memoize('stock', 'alerts', lambda: _load_active_alerts(session))


def list_movements(session: Session, product_id: Optional[int] = None, limit: int = 50) -> List[StockMovement]:
    """Most recent movements, optionally for a single product."""
    query = session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()
