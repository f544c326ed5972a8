"""
Sale finalization.

confirm_checkout drives a CheckoutSession through idle -> processing ->
success|failed and performs the side effects of a sale exactly once, in
order:

    (a) persist the sale (lines, payments, linked customer and repairs)
    (b) one 'salida' stock movement per sold product
    (c) deliver linked repairs and/or record their final cost
    (d) create the credit obligation when part of the sale is on credit

Each completed step is recorded in ``checkout.progress``; retrying a failed
checkout resumes after the last completed step. Progress is rebuilt from the
database whenever a sale already exists under the idempotency key, so a stale
copy of the checkout cannot repeat a step, and the stored sale totals are
reused instead of pricing the cart again. The sale record is never rolled
back once (a) commits: a later failure flags it ``needs_reconciliation`` so
the operator can fix stock or repairs by hand.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from repairpos.exceptions import (
    PosError, ValidationError, NotFoundError, BusinessLogicError, InsufficientCreditError,
    StockConflictError, to_backend_error
)
from repairpos.models import (
    Customer, CustomerCredit, Product, RepairOrder, Sale, SaleLine, SalePayment, SaleStatus, PaymentStatus,
    StockMovement, StockMovementType
)
from repairpos.blueprints import metrics
from repairpos.services import cash_register_service, credit_service, repair_service, stock_service
from repairpos.services.payment_split_service import CheckoutSession, PaymentStatusState, card_digits
from repairpos.services.pricing_service import (
    ZERO, DEFAULT_WHOLESALE_DISCOUNT_RATE, TaxConfig, compute_cart_calculations, round2, to_decimal
)

logger = logging.getLogger(__name__)


def allocate_repair_costs(repairs: List[RepairOrder], amount, sale_id: Optional[int] = None) -> Dict[int, Decimal]:
    """
    Split ``amount`` across repairs proportionally to their base cost.

    Repairs with no cost share equally; the rounding residue goes to the last one.
    """
    repairs = list(repairs or [])
    if not repairs:
        return {}
    amount = round2(max(to_decimal(amount), ZERO))
    bases = [repair_service.repair_base_cost(r, sale_id) for r in repairs]
    total_base = sum(bases, ZERO)

    shares = {}
    allocated = ZERO
    for index, (repair, base) in enumerate(zip(repairs, bases)):
        if index == len(repairs) - 1:
            share = amount - allocated
        elif total_base > 0:
            share = round2(amount * base / total_base)
        else:
            share = round2(amount / len(repairs))
        shares[repair.id] = share
        allocated += share
    return shares


def calculate_checkout(
    session: Session,
    checkout: CheckoutSession,
    tax_config: Optional[TaxConfig] = None,
    wholesale_discount_rate=DEFAULT_WHOLESALE_DISCOUNT_RATE,
    repairs: Optional[List[RepairOrder]] = None
) -> Dict[str, Any]:
    """Cart calculations for a checkout; retargets the split ledger to the new total."""
    if repairs is None:
        repairs = repair_service.get_repairs(session, checkout.repair_ids)
    sale_id = checkout.progress.get('sale_id')
    calculations = compute_cart_calculations(
        checkout.cart,
        discount_percent=checkout.discount_percent,
        is_wholesale=checkout.is_wholesale,
        wholesale_discount_rate=wholesale_discount_rate,
        linked_repair_cost=[repair_service.repair_base_cost(r, sale_id) for r in repairs] if repairs else None,
        tax_config=tax_config,
        amount_tendered=checkout.cash_received
    )
    checkout.ledger.set_total(calculations['total'])
    return calculations


def credit_portion(checkout: CheckoutSession, total: Decimal) -> Decimal:
    """Amount of the sale charged to the customer's credit account."""
    if checkout.is_mixed_payment:
        return checkout.ledger.credit_amount()
    if checkout.payment_method == 'credit':
        return round2(total)
    return ZERO


def _check_credit(session: Session, checkout: CheckoutSession, amount: Decimal) -> None:
    if not checkout.customer_id:
        raise ValidationError('Para vender a crédito debe seleccionar un cliente')
    customer = session.get(Customer, checkout.customer_id)
    if customer is None:
        raise NotFoundError(f'Cliente {checkout.customer_id} no encontrado')
    summary = credit_service.load_credit_summary(session, customer.id)
    if not credit_service.can_sell_on_credit(customer, amount, summary):
        available = to_decimal(summary['available_credit'])
        raise InsufficientCreditError(max(amount - available, ZERO), available=available)


def _check_stock(session: Session, checkout: CheckoutSession) -> None:
    applied = set(checkout.progress.get('stock_applied') or [])
    for item in checkout.cart:
        if item.get('is_service') or item['id'] in applied:
            continue
        product = session.get(Product, item['id'])
        if product is None:
            raise ValidationError(f"Producto {item['id']} no encontrado")
        if product.stock_quantity < int(item['quantity']):
            raise StockConflictError(product.name, int(item['quantity']), product.stock_quantity)


def validate_checkout(session: Session, checkout: CheckoutSession, calculations: Dict[str, Any]) -> None:
    """
    Guards of the confirm action. Raise without touching the checkout state.

    Raises:
        ValidationError: register closed, empty sale or incomplete payment input
        InsufficientCreditError: the credit portion exceeds the available credit
        StockConflictError: a product no longer has the quantity in the cart
    """
    if not cash_register_service.is_register_open(session):
        raise ValidationError('La caja está cerrada. Abra la caja para registrar ventas.')
    if not checkout.cart and not checkout.repair_ids:
        raise ValidationError('El carrito está vacío')

    total = calculations['total']

    if checkout.is_mixed_payment:
        if not checkout.ledger.can_confirm():
            raise ValidationError(
                f'Falta cubrir {checkout.ledger.remaining()} del total',
                payload={'remaining': str(checkout.ledger.remaining())}
            )
    elif checkout.payment_method == 'cash':
        if round2(checkout.cash_received) < total:
            raise ValidationError('El efectivo recibido no cubre el total de la venta')
    elif checkout.payment_method == 'card':
        if len(card_digits(checkout.card_number)) < 4:
            raise ValidationError('Ingrese al menos los últimos 4 dígitos de la tarjeta')
    elif checkout.payment_method == 'transfer':
        if not (checkout.transfer_reference or '').strip():
            raise ValidationError('La transferencia requiere un número de referencia')
    elif checkout.payment_method != 'credit':
        raise ValidationError(f'Método de pago inválido: {checkout.payment_method}')

    on_credit = credit_portion(checkout, total)
    if on_credit > 0 and not checkout.progress.get('credit_done'):
        _check_credit(session, checkout, on_credit)

    if not checkout.progress.get('sale_id'):
        _check_stock(session, checkout)


def _sale_payment_method(checkout: CheckoutSession) -> str:
    return 'mixed' if checkout.is_mixed_payment else checkout.payment_method


def _build_payments(checkout: CheckoutSession, total: Decimal) -> List[SalePayment]:
    if checkout.is_mixed_payment:
        return [
            SalePayment(
                payment_method=entry['method'],
                amount=round2(entry['amount']),
                reference=entry.get('reference'),
                card_last4=entry.get('card_last4')
            )
            for entry in checkout.ledger.entries
        ]

    method = checkout.payment_method
    payment = SalePayment(payment_method=method, amount=total)
    if method == 'cash':
        payment.amount_received = round2(checkout.cash_received)
        payment.change_amount = max(ZERO, round2(checkout.cash_received) - total)
    elif method == 'card':
        payment.card_last4 = card_digits(checkout.card_number)[-4:]
    elif method == 'transfer':
        payment.reference = checkout.transfer_reference.strip()
    return [payment]


def _persist_sale(
    session: Session,
    checkout: CheckoutSession,
    calculations: Dict[str, Any],
    repairs: List[RepairOrder]
) -> int:
    """Step (a). Returns the sale id; reuses a sale already stored under the idempotency key."""
    existing = session.query(Sale).filter_by(idempotency_key=checkout.idempotency_key).first()
    if existing:
        logger.info(f"[CHECKOUT] Sale {existing.id} already stored for key {checkout.idempotency_key}")
        return existing.id

    total = calculations['total']
    on_credit = credit_portion(checkout, total)
    paid_now = total - on_credit
    if on_credit <= 0:
        payment_status = PaymentStatus.PAID
    elif paid_now > 0:
        payment_status = PaymentStatus.PARTIAL
    else:
        payment_status = PaymentStatus.PENDING

    register = cash_register_service.get_open_register(session)
    try:
        sale = Sale(
            customer_id=checkout.customer_id,
            cash_register_id=register.id if register else None,
            subtotal=calculations['subtotal'],
            discount_amount=calculations['general_discount_amount'],
            wholesale_discount_amount=calculations['wholesale_discount_amount'],
            tax_amount=calculations['tax'] + calculations['repair_tax'],
            repair_cost=calculations['repair_cost_with_tax'],
            total=total,
            is_wholesale=checkout.is_wholesale,
            payment_method=_sale_payment_method(checkout),
            amount_tendered=round2(checkout.cash_received) if _sale_payment_method(checkout) == 'cash' else None,
            change_amount=calculations['change'] if _sale_payment_method(checkout) == 'cash' else None,
            status=SaleStatus.CONFIRMED,
            payment_status=payment_status.value,
            amount_paid=paid_now,
            idempotency_key=checkout.idempotency_key
        )
        session.add(sale)
        session.flush()

        for line in calculations['lines']:
            if line['quantity'] <= 0:
                continue
            session.add(SaleLine(
                sale_id=sale.id,
                product_id=line['id'],
                qty=line['quantity'],
                unit_price=line['unit_price'],
                line_total=line['line_total']
            ))

        for payment in _build_payments(checkout, total):
            payment.sale_id = sale.id
            session.add(payment)

        for repair in repairs:
            repair.sale_id = sale.id

        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[CHECKOUT] Could not store sale: {e}")
        raise to_backend_error(e) from e

    logger.info(f"[CHECKOUT] Sale {sale.id} stored: total={total} method={sale.payment_method}")
    return sale.id


def _repairs_pending(checkout: CheckoutSession) -> bool:
    return bool(checkout.repair_ids) and (checkout.mark_delivered or checkout.use_final_cost_from_sale)


def _stock_items(checkout: CheckoutSession) -> List[Dict[str, Any]]:
    return [item for item in checkout.cart if not item.get('is_service') and int(item['quantity']) > 0]


def load_stored_sale(session: Session, checkout: CheckoutSession) -> Optional[Sale]:
    """
    Sale already stored under the checkout's idempotency key, if any.

    The checkout's ``progress`` is rebuilt from the database, since the copy
    held by the client may predate the last attempt: the sale's 'salida'
    movements give the stock step, ``Sale.repairs_finalized`` the repair
    step and a credit linked to the sale the credit step.
    """
    sale = session.query(Sale).filter_by(idempotency_key=checkout.idempotency_key).first()
    if sale is None:
        return None

    applied = [
        product_id for (product_id,) in session.query(StockMovement.product_id).filter(
            StockMovement.reference == f'VENTA-{sale.id}',
            StockMovement.type == StockMovementType.SALIDA
        ).distinct()
    ]
    has_credit = session.query(CustomerCredit.id).filter(CustomerCredit.sale_id == sale.id).first() is not None
    checkout.progress.update({
        'sale_id': sale.id,
        'stock_applied': applied,
        'repairs_done': bool(sale.repairs_finalized) or not _repairs_pending(checkout),
        'credit_done': has_credit,
    })
    return sale


def _steps_done(checkout: CheckoutSession, on_credit: Decimal) -> bool:
    progress = checkout.progress
    applied = set(progress.get('stock_applied') or [])
    return (
        all(item['id'] in applied for item in _stock_items(checkout))
        and bool(progress.get('repairs_done'))
        and (on_credit <= 0 or bool(progress.get('credit_done')))
    )


def _stored_totals(checkout: CheckoutSession, sale: Sale) -> Dict[str, Any]:
    """Totals of an already stored sale; a retry never prices the sale again."""
    totals = {
        'total': round2(sale.total),
        'repair_cost_with_tax': round2(sale.repair_cost),
    }
    checkout.ledger.set_total(totals['total'])
    return totals


def _apply_stock(session: Session, checkout: CheckoutSession, sale_id: int) -> None:
    """Step (b)."""
    applied = checkout.progress.setdefault('stock_applied', [])
    for item in checkout.cart:
        if item.get('is_service') or item['id'] in applied:
            continue
        quantity = int(item['quantity'])
        if quantity <= 0:
            continue
        stock_service.apply_movement(
            session,
            item['id'],
            quantity,
            StockMovementType.SALIDA,
            reason=f'Venta #{sale_id}',
            reference=f'VENTA-{sale_id}'
        )
        applied.append(item['id'])


def _finalize_repairs(
    session: Session,
    checkout: CheckoutSession,
    sale_id: int,
    repairs: List[RepairOrder],
    repair_amount: Decimal
) -> None:
    """Step (c)."""
    if checkout.progress.get('repairs_done'):
        return
    if _repairs_pending(checkout):
        shares = allocate_repair_costs(repairs, repair_amount, sale_id)
        try:
            for repair in repairs:
                if checkout.mark_delivered:
                    repair_service.mark_repair_delivered(repair, sale_id)
                if checkout.use_final_cost_from_sale:
                    repair_service.set_repair_final_cost(repair, shares[repair.id])
            session.get(Sale, sale_id).repairs_finalized = True
            session.commit()
        except PosError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise to_backend_error(e) from e
    checkout.progress['repairs_done'] = True


def _create_credit(session: Session, checkout: CheckoutSession, sale_id: int, amount: Decimal,
                   frequency: str) -> None:
    """Step (d)."""
    if checkout.progress.get('credit_done'):
        return
    if amount > 0:
        customer = session.get(Customer, checkout.customer_id) if checkout.customer_id else None
        credit_service.create_credit_sale(
            session,
            customer,
            amount,
            repair_ids=checkout.repair_ids,
            sale_id=sale_id,
            installment_count=checkout.installment_count,
            frequency=frequency
        )
    checkout.progress['credit_done'] = True


def _flag_for_reconciliation(session: Session, sale_id: int, error: PosError) -> None:
    """Mark a stored sale whose follow-up steps failed."""
    progress_note = f'Finalización incompleta: {error.message}'
    try:
        sale = session.get(Sale, sale_id)
        if sale is None:
            return
        sale.needs_reconciliation = True
        sale.reconciliation_notes = '\n'.join(filter(None, [sale.reconciliation_notes, progress_note]))
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[CHECKOUT] Could not flag sale {sale_id} for reconciliation: {e}")
        return
    logger.warning(f"[CHECKOUT] Sale {sale_id} needs manual reconciliation: {error.message}")


def _clear_reconciliation(session: Session, sale_id: int) -> None:
    """A retry that completed every step leaves nothing to reconcile."""
    try:
        sale = session.get(Sale, sale_id)
        if sale is None or not sale.needs_reconciliation:
            return
        sale.needs_reconciliation = False
        sale.reconciliation_notes = '\n'.join(
            filter(None, [sale.reconciliation_notes, 'Finalización completada al reintentar'])
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[CHECKOUT] Could not clear reconciliation flag of sale {sale_id}: {e}")


def confirm_checkout(
    session: Session,
    checkout: CheckoutSession,
    tax_config: Optional[TaxConfig] = None,
    wholesale_discount_rate=DEFAULT_WHOLESALE_DISCOUNT_RATE,
    installment_frequency: str = 'monthly'
) -> CheckoutSession:
    """
    Confirm (or retry) a checkout.

    Guard failures raise and leave the state untouched. Once processing
    starts, every error ends in the failed state with ``payment_error`` set;
    nothing is raised.

    Returns:
        The same checkout, now in success or failed state.
    """
    if checkout.payment_status == PaymentStatusState.SUCCESS:
        raise BusinessLogicError('La venta ya fue confirmada', status_code=409)
    if checkout.payment_status == PaymentStatusState.PROCESSING:
        raise BusinessLogicError('La venta ya se está procesando', status_code=409)

    repairs = repair_service.get_repairs(session, checkout.repair_ids)
    stored = load_stored_sale(session, checkout)
    if stored is None:
        calculations = calculate_checkout(session, checkout, tax_config, wholesale_discount_rate, repairs)
    else:
        calculations = _stored_totals(checkout, stored)
        if _steps_done(checkout, credit_portion(checkout, calculations['total'])):
            _clear_reconciliation(session, stored.id)
            checkout.transition(PaymentStatusState.PROCESSING)
            checkout.transition(PaymentStatusState.SUCCESS)
            logger.info(f"[CHECKOUT] Sale {stored.id} was already finalized, nothing to do")
            return checkout
        if not stored.needs_reconciliation:
            # Another request is still finalizing this sale
            raise BusinessLogicError('La venta ya se está procesando', status_code=409)
    validate_checkout(session, checkout, calculations)

    checkout.transition(PaymentStatusState.PROCESSING)
    checkout.payment_error = None
    checkout.error_kind = None
    progress = checkout.progress

    try:
        if not progress.get('sale_id'):
            progress['sale_id'] = _persist_sale(session, checkout, calculations, repairs)
        sale_id = progress['sale_id']

        _apply_stock(session, checkout, sale_id)
        _finalize_repairs(session, checkout, sale_id, repairs, calculations['repair_cost_with_tax'])
        _create_credit(session, checkout, sale_id, credit_portion(checkout, calculations['total']),
                       installment_frequency)

    except Exception as e:
        if isinstance(e, PosError):
            error = e
        else:
            logger.exception(f"[CHECKOUT] Unexpected error finalizing sale: {e}")
            session.rollback()
            error = to_backend_error(e) if isinstance(e, SQLAlchemyError) else PosError(
                f'Error al confirmar venta: {e}'
            )

        if progress.get('sale_id'):
            _flag_for_reconciliation(session, progress['sale_id'], error)

        checkout.transition(PaymentStatusState.FAILED)
        checkout.payment_error = error.message
        checkout.error_kind = error.kind
        metrics.record_sale_failed(error.kind)
        logger.warning(f"[CHECKOUT] Checkout failed ({error.kind}): {error.message}")
        return checkout

    _clear_reconciliation(session, progress['sale_id'])
    checkout.transition(PaymentStatusState.SUCCESS)
    metrics.record_sale_confirmed(_sale_payment_method(checkout))
    logger.info(f"[CHECKOUT] Sale {progress['sale_id']} finalized")
    return checkout


def close_checkout(checkout: CheckoutSession) -> CheckoutSession:
    """Close the result dialog: back to idle with an empty cart and ledger."""
    if checkout.payment_status == PaymentStatusState.PROCESSING:
        raise BusinessLogicError('La venta se está procesando', status_code=409)
    if checkout.payment_status in (PaymentStatusState.SUCCESS, PaymentStatusState.FAILED):
        checkout.transition(PaymentStatusState.IDLE)
    checkout.reset()
    return checkout
