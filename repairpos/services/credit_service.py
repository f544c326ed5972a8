"""
Customer credit (cuenta corriente) service.

A credit sale creates a CustomerCredit obligation split into installments.
The credit summary derives the customer's used and available credit from
the unpaid installments; it is recomputed from records every time it is
needed and only cached for a short TTL.
"""
import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repairpos.exceptions import (
    PosError, ValidationError, NotFoundError, InsufficientCreditError, to_backend_error
)
from repairpos.models import (
    Customer, CustomerCredit, CreditInstallment, CreditPayment, Sale, PaymentStatus,
    CreditStatus, InstallmentStatus, InstallmentFrequency, RepairOrder
)
from repairpos.services.cache_service import get_cache, invalidate
from repairpos.services.pricing_service import CENT, ZERO, HUNDRED, round2, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_NEAR_LIMIT_PERCENT = Decimal('80')

UNPAID_STATUSES = (InstallmentStatus.PENDING, InstallmentStatus.LATE)


def _today(today: Optional[date]) -> date:
    return today or date.today()


def _unpaid(installment: CreditInstallment) -> Decimal:
    return round2(max(to_decimal(installment.amount) - to_decimal(installment.amount_paid), ZERO))


def calculate_days_overdue(due_date: date, today: Optional[date] = None) -> int:
    """Days past due; 0 when not yet due."""
    if due_date is None:
        return 0
    return max(0, (_today(today) - due_date).days)


def get_credit_summary(
    customer: Optional[Customer],
    credits: Iterable[CustomerCredit],
    installments: Iterable[CreditInstallment],
    today: Optional[date] = None
) -> Dict[str, Any]:
    """
    Derive a customer's credit position from their credits and installments.

    used_credit is the unpaid amount of pending or late installments (credits
    without a schedule count their whole principal while active).
    available_credit = max(0, credit_limit - used_credit) and total_credit =
    available + used, so utilization is 100% at most unless the customer is
    already over the limit.
    """
    today = _today(today)
    credits = list(credits or [])
    installments = list(installments or [])

    if customer is None:
        limit = ZERO
    else:
        limit = round2(max(to_decimal(customer.credit_limit), ZERO))

    scheduled = {i.credit_id for i in installments}
    used = ZERO
    overdue = ZERO
    total_paid = ZERO
    next_payment = None

    for inst in installments:
        total_paid += to_decimal(inst.amount_paid)
        if inst.status not in UNPAID_STATUSES:
            continue
        unpaid = _unpaid(inst)
        if unpaid <= 0:
            continue
        used += unpaid
        if inst.status == InstallmentStatus.LATE or inst.due_date < today:
            overdue += unpaid
        if next_payment is None or (inst.due_date, inst.id or 0) < (next_payment['due_date'], next_payment['_id']):
            next_payment = {
                'credit_id': inst.credit_id,
                'installment_number': inst.installment_number,
                'due_date': inst.due_date,
                'amount': unpaid,
                '_id': inst.id or 0,
            }

    for credit in credits:
        if credit.status == CreditStatus.ACTIVE and credit.id not in scheduled:
            used += round2(credit.principal)

    used = round2(used)
    available = round2(max(ZERO, limit - used))
    total = available + used
    utilization = round2(used / total * HUNDRED) if total > 0 else ZERO

    if next_payment is not None:
        next_payment.pop('_id')
        next_payment['days_overdue'] = calculate_days_overdue(next_payment['due_date'], today)
        next_payment['due_date'] = next_payment['due_date'].isoformat()

    return {
        'customer_id': customer.id if customer is not None else None,
        'credit_limit': limit,
        'total_credit': total,
        'used_credit': used,
        'available_credit': available,
        'overdue_amount': round2(overdue),
        'credit_utilization_percent': utilization,
        'pending_sales': sum(1 for c in credits if c.status == CreditStatus.ACTIVE),
        'active_credits': sum(1 for c in credits if c.status == CreditStatus.ACTIVE),
        'completed_credits': sum(1 for c in credits if c.status == CreditStatus.COMPLETED),
        'total_paid': round2(total_paid),
        'next_payment': next_payment,
    }


def _load_credit_records(session: Session, customer_id: int) -> Tuple[List[CustomerCredit], List[CreditInstallment]]:
    credits = session.query(CustomerCredit).filter(CustomerCredit.customer_id == customer_id).all()
    installments = session.query(CreditInstallment).join(
        CustomerCredit, CustomerCredit.id == CreditInstallment.credit_id
    ).filter(CustomerCredit.customer_id == customer_id).order_by(
        CreditInstallment.due_date, CreditInstallment.id
    ).all()
    return credits, installments


def _summary_from_db(session: Session, customer: Customer, today: Optional[date]) -> Dict[str, Any]:
    credits, installments = _load_credit_records(session, customer.id)
    return get_credit_summary(customer, credits, installments, today)


def load_credit_summary(session: Session, customer_id: int, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Credit summary for a stored customer, cache-aside.

    Raises:
        NotFoundError: if the customer does not exist
    """
    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f'Cliente {customer_id} no encontrado')

    today = _today(today)
    loader = lambda: _summary_from_db(session, customer, today)  # noqa: E731
    try:
        cache = get_cache()
    except RuntimeError:
        return loader()
    return cache.memoize('credit', f'summary:{customer_id}:{today.isoformat()}', loader)


def can_sell_on_credit(customer: Optional[Customer], proposed_amount, summary: Dict[str, Any]) -> bool:
    """True iff the customer exists, has a credit limit and enough available credit."""
    if customer is None:
        return False
    if to_decimal(customer.credit_limit) <= 0:
        return False
    return to_decimal(summary.get('available_credit')) >= round2(to_decimal(proposed_amount))


def classify_credit_utilization(
    summary: Dict[str, Any],
    proposed_amount=0,
    threshold=DEFAULT_NEAR_LIMIT_PERCENT
) -> str:
    """
    Utilization state for UI warnings: 'ok', 'near_limit' or 'over_limit'.

    near_limit when (used + proposed) / total_credit * 100 exceeds the threshold.
    """
    proposed = round2(max(to_decimal(proposed_amount), ZERO))
    if proposed > to_decimal(summary.get('available_credit')):
        return 'over_limit'

    total = to_decimal(summary.get('total_credit'))
    if total <= 0:
        return 'ok'
    projected = (to_decimal(summary.get('used_credit')) + proposed) / total * HUNDRED
    if projected > to_decimal(threshold):
        return 'near_limit'
    return 'ok'


def _coerce_frequency(value) -> InstallmentFrequency:
    if isinstance(value, InstallmentFrequency):
        return value
    try:
        return InstallmentFrequency(str(value or 'monthly').strip().lower())
    except ValueError:
        raise ValidationError(f'Frecuencia de cuotas inválida: {value}')


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date_for(start_date: date, number: int, frequency: InstallmentFrequency) -> date:
    """Due date of installment ``number`` (1-based); the first falls one period after start."""
    if frequency == InstallmentFrequency.WEEKLY:
        return start_date + timedelta(days=7 * number)
    if frequency == InstallmentFrequency.BIWEEKLY:
        return start_date + timedelta(days=14 * number)
    return _add_months(start_date, number)


def build_installment_schedule(amount, installment_count: int, frequency, start_date: date) -> List[Dict[str, Any]]:
    """Equal installments rounded down to the cent; the remainder goes on the last one."""
    amount = round2(amount)
    count = max(1, int(installment_count or 1))
    frequency = _coerce_frequency(frequency)

    base = (amount / count).quantize(CENT, rounding=ROUND_DOWN)
    schedule = []
    for number in range(1, count + 1):
        value = base if number < count else amount - base * (count - 1)
        schedule.append({
            'installment_number': number,
            'due_date': due_date_for(start_date, number, frequency),
            'amount': value,
        })
    return schedule


def create_credit_sale(
    session: Session,
    customer: Optional[Customer],
    amount,
    repair_ids: Optional[List[int]] = None,
    sale_id: Optional[int] = None,
    installment_count: int = 1,
    frequency='monthly',
    start_date: Optional[date] = None
) -> CustomerCredit:
    """
    Record a credit obligation for ``amount`` and commit it.

    Links the given repairs to the new credit and raises the customer's
    current balance. On any failure the transaction is rolled back and no
    cached summary is touched, so the caller can retry with the same input.

    Raises:
        ValidationError: non-positive amount or bad schedule input
        NotFoundError: missing customer
        InsufficientCreditError: available credit does not cover the amount
        BackendUnavailableError: database failure
    """
    if customer is None:
        raise NotFoundError('Cliente no encontrado')
    amount = round2(to_decimal(amount))
    if amount <= 0:
        raise ValidationError('El monto a financiar debe ser mayor a 0')
    frequency = _coerce_frequency(frequency)
    start_date = start_date or date.today()

    try:
        summary = _summary_from_db(session, customer, start_date)
        if not can_sell_on_credit(customer, amount, summary):
            available = to_decimal(summary['available_credit'])
            logger.warning(
                f"[CREDIT] Rejected credit sale of {amount} for customer {customer.id}: available {available}"
            )
            raise InsufficientCreditError(amount - available, available=available)

        credit = CustomerCredit(
            customer_id=customer.id,
            sale_id=sale_id,
            principal=amount,
            installment_count=max(1, int(installment_count or 1)),
            frequency=frequency,
            start_date=start_date,
            status=CreditStatus.ACTIVE
        )
        for entry in build_installment_schedule(amount, credit.installment_count, frequency, start_date):
            credit.installments.append(CreditInstallment(
                installment_number=entry['installment_number'],
                due_date=entry['due_date'],
                amount=entry['amount'],
                amount_paid=ZERO,
                status=InstallmentStatus.PENDING
            ))
        session.add(credit)
        session.flush()

        if repair_ids:
            session.query(RepairOrder).filter(
                RepairOrder.id.in_([int(r) for r in repair_ids])
            ).update({RepairOrder.credit_id: credit.id}, synchronize_session=False)

        customer.current_balance = round2(to_decimal(customer.current_balance) + amount)
        session.commit()

    except PosError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[CREDIT] Database error creating credit for customer {customer.id}: {e}")
        raise to_backend_error(e) from e

    logger.info(
        f"[CREDIT] Credit {credit.id} created for customer {customer.id}: "
        f"{amount} in {credit.installment_count} {frequency.value} installments"
    )
    _invalidate_credit_cache()
    return credit


def record_credit_payment(
    session: Session,
    customer_id: int,
    amount,
    payment_method: str = 'cash',
    reference: Optional[str] = None
) -> Dict[str, Any]:
    """
    Apply a customer payment to unpaid installments, oldest due first.

    Returns:
        Dict with applied amount, per-installment breakdown and the new balance.
    """
    amount = round2(to_decimal(amount))
    if amount <= 0:
        raise ValidationError('El monto del pago debe ser mayor a 0')

    customer = session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f'Cliente {customer_id} no encontrado')

    try:
        installments = session.query(CreditInstallment).join(
            CustomerCredit, CustomerCredit.id == CreditInstallment.credit_id
        ).filter(
            CustomerCredit.customer_id == customer_id,
            CustomerCredit.status == CreditStatus.ACTIVE,
            CreditInstallment.status.in_(UNPAID_STATUSES)
        ).order_by(CreditInstallment.due_date, CreditInstallment.id).all()

        owed = sum((_unpaid(i) for i in installments), ZERO)
        if amount > owed:
            raise ValidationError(
                f'El pago ({amount}) supera la deuda pendiente ({owed})', payload={'owed': str(owed)}
            )

        remaining = amount
        applied = []
        touched_credits = {}
        now = datetime.now(timezone.utc)
        for inst in installments:
            if remaining <= 0:
                break
            portion = min(_unpaid(inst), remaining)
            if portion <= 0:
                continue
            inst.amount_paid = round2(to_decimal(inst.amount_paid) + portion)
            if _unpaid(inst) == 0:
                inst.status = InstallmentStatus.PAID
                inst.paid_at = now
            remaining -= portion
            session.add(CreditPayment(
                credit_id=inst.credit_id,
                installment_id=inst.id,
                amount=portion,
                payment_method=payment_method,
                notes=reference
            ))
            touched_credits[inst.credit_id] = inst.credit
            applied.append({
                'credit_id': inst.credit_id,
                'installment_number': inst.installment_number,
                'amount': portion,
                'status': inst.status.value,
            })

        for credit in touched_credits.values():
            if all(i.status == InstallmentStatus.PAID for i in credit.installments):
                credit.status = CreditStatus.COMPLETED
            _apply_payment_to_sale(session, credit, sum(
                (a['amount'] for a in applied if a['credit_id'] == credit.id), ZERO
            ))

        customer.current_balance = round2(max(ZERO, to_decimal(customer.current_balance) - amount))
        session.commit()

    except PosError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        raise to_backend_error(e) from e

    logger.info(f"[CREDIT] Payment of {amount} applied for customer {customer_id}")
    _invalidate_credit_cache()
    return {
        'customer_id': customer_id,
        'applied': amount,
        'installments': applied,
        'current_balance': round2(customer.current_balance),
    }


def _apply_payment_to_sale(session: Session, credit: CustomerCredit, portion: Decimal) -> None:
    if credit.sale_id is None or portion <= 0:
        return
    sale = session.get(Sale, credit.sale_id)
    if sale is None:
        return
    sale.amount_paid = round2(to_decimal(sale.amount_paid) + portion)
    sale.payment_status = PaymentStatus.PAID.value if sale.amount_paid >= sale.total else PaymentStatus.PARTIAL.value


def mark_overdue_installments(session: Session, today: Optional[date] = None) -> int:
    """Flag pending installments past their due date as late. Returns how many changed."""
    today = _today(today)
    try:
        count = session.query(CreditInstallment).filter(
            CreditInstallment.status == InstallmentStatus.PENDING,
            CreditInstallment.due_date < today
        ).update({CreditInstallment.status: InstallmentStatus.LATE}, synchronize_session=False)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise to_backend_error(e) from e

    if count:
        logger.info(f"[CREDIT] {count} installments marked as late")
        _invalidate_credit_cache()
    return count


def _invalidate_credit_cache() -> None:
    invalidate('credit')

