"""
Repair order helpers used by the checkout.

Repairs are owned by the repair-tracking side of the shop; the POS only
reads their cost, marks them delivered and records the final charged cost.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from repairpos.exceptions import NotFoundError, BusinessLogicError
from repairpos.models import RepairOrder, RepairStatus
from repairpos.services.pricing_service import ZERO, round2, to_decimal

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (RepairStatus.DELIVERED, RepairStatus.CANCELLED)


def get_repairs(session: Session, repair_ids: Iterable[int]) -> List[RepairOrder]:
    """
    Load repairs by id, preserving the requested order.

    Raises:
        NotFoundError: if any id does not exist
    """
    ids = [int(rid) for rid in repair_ids or []]
    if not ids:
        return []

    found = {r.id: r for r in session.query(RepairOrder).filter(RepairOrder.id.in_(ids)).all()}
    missing = [rid for rid in ids if rid not in found]
    if missing:
        raise NotFoundError(f'Reparación no encontrada: {", ".join(str(m) for m in missing)}')
    return [found[rid] for rid in ids]


def repair_base_cost(repair: RepairOrder, sale_id: Optional[int] = None) -> Decimal:
    """
    Cost to charge for a repair: final, else estimated, else labor + parts.

    A final cost written by ``sale_id`` itself is ignored, so pricing that
    sale again starts from the same input.
    """
    priced_by_sale = sale_id is not None and repair.sale_id == sale_id
    if repair.final_cost is not None and not priced_by_sale:
        return round2(repair.final_cost)
    if repair.estimated_cost is not None:
        return round2(repair.estimated_cost)
    return round2(to_decimal(repair.labor_cost) + to_decimal(repair.parts_cost))


def linked_repair_cost(repairs: Iterable[RepairOrder]) -> Optional[Decimal]:
    """Total cost of the linked repairs, or None when no repair is linked."""
    repairs = list(repairs or [])
    if not repairs:
        return None
    return sum((repair_base_cost(r) for r in repairs), ZERO)


def mark_repair_delivered(repair: RepairOrder, sale_id: Optional[int] = None) -> None:
    """Set the repair as delivered. Does not commit."""
    if repair.status == RepairStatus.CANCELLED:
        raise BusinessLogicError(f'La reparación {repair.id} está cancelada')
    repair.status = RepairStatus.DELIVERED
    repair.delivered_at = datetime.now(timezone.utc)
    if sale_id is not None:
        repair.sale_id = sale_id
    logger.info(f"[REPAIR] Repair {repair.id} delivered (sale={sale_id})")


def set_repair_final_cost(repair: RepairOrder, amount) -> None:
    """Record the amount actually charged for the repair. Does not commit."""
    repair.final_cost = round2(max(to_decimal(amount), ZERO))


def list_deliverable_repairs(session: Session, customer_id: int) -> List[RepairOrder]:
    """Repairs of a customer that can still be charged at the POS."""
    return session.query(RepairOrder).filter(
        RepairOrder.customer_id == customer_id,
        RepairOrder.status.notin_(CLOSED_STATUSES),
        RepairOrder.sale_id.is_(None)
    ).order_by(RepairOrder.created_at, RepairOrder.id).all()
