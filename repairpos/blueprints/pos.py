"""POS blueprint: cart, payment options, mixed-payment splits and sale confirmation (JSON)."""
from decimal import Decimal

from flask import Blueprint, request, session, jsonify, current_app
from flask_wtf.csrf import generate_csrf

from repairpos.database import get_session
from repairpos.exceptions import ValidationError, NotFoundError, BusinessLogicError
from repairpos.models import Product, Customer
from repairpos.services import checkout_service, credit_service, repair_service
from repairpos.services.payment_split_service import CheckoutSession, normalize_payment_method
from repairpos.services.pricing_service import TaxConfig, to_decimal
from repairpos.utils.serialization import serialize_value


pos_bp = Blueprint('pos', __name__, url_prefix='/pos')

CHECKOUT_SESSION_KEY = 'checkout'


def get_checkout() -> CheckoutSession:
    """Checkout of the current browser session."""
    return CheckoutSession.from_dict(session.get(CHECKOUT_SESSION_KEY))


def save_checkout(checkout: CheckoutSession) -> None:
    session[CHECKOUT_SESSION_KEY] = serialize_value(checkout.to_dict())
    session.modified = True


def _tax_config() -> TaxConfig:
    return TaxConfig.from_app_config(current_app.config)


def _wholesale_rate() -> Decimal:
    return to_decimal(current_app.config.get('WHOLESALE_DISCOUNT_RATE', '10'))


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _parse_int(value, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'El campo {field} debe ser un número entero')


def _checkout_payload(db_session, checkout: CheckoutSession) -> dict:
    """Checkout state plus its current calculations."""
    calculations = checkout_service.calculate_checkout(
        db_session, checkout, _tax_config(), _wholesale_rate()
    )
    payload = {
        'status': 'success',
        'cart': checkout.cart,
        'calculations': calculations,
        'discount_percent': checkout.discount_percent,
        'is_wholesale': checkout.is_wholesale,
        'customer_id': checkout.customer_id,
        'repair_ids': checkout.repair_ids,
        'mark_delivered': checkout.mark_delivered,
        'use_final_cost_from_sale': checkout.use_final_cost_from_sale,
        'payment_method': checkout.payment_method,
        'is_mixed_payment': checkout.is_mixed_payment,
        'installment_count': checkout.installment_count,
        'splits': checkout.ledger.to_list(),
        'total_paid': checkout.ledger.total_paid(),
        'remaining': checkout.ledger.remaining(),
        'can_confirm_mixed': checkout.ledger.can_confirm(),
        'payment_status': checkout.payment_status,
        'payment_error': checkout.payment_error,
        'error_kind': checkout.error_kind,
        'sale_id': checkout.progress.get('sale_id'),
    }

    on_credit = checkout_service.credit_portion(checkout, calculations['total'])
    if checkout.customer_id:
        summary = credit_service.load_credit_summary(db_session, checkout.customer_id)
        threshold = current_app.config.get('CREDIT_NEAR_LIMIT_PERCENT', 80)
        payload['credit'] = {
            'summary': summary,
            'utilization_state': credit_service.classify_credit_utilization(summary, on_credit, threshold),
        }
    return serialize_value(payload)


@pos_bp.route('/checkout', methods=['GET'])
def checkout_state():
    db_session = get_session()
    checkout = get_checkout()
    payload = _checkout_payload(db_session, checkout)
    # Token for the X-CSRFToken header of later POSTs
    payload['csrf_token'] = generate_csrf()
    save_checkout(checkout)
    return jsonify(payload)


@pos_bp.route('/cart/add', methods=['POST'])
def cart_add():
    """Add a product to the cart."""
    db_session = get_session()
    data = _json_body()
    product_id = _parse_int(data.get('product_id'), 'product_id')
    qty = _parse_int(data.get('quantity', 1), 'quantity')
    if qty <= 0:
        raise ValidationError('La cantidad debe ser mayor a 0')

    product = db_session.get(Product, product_id)
    if product is None or not product.is_active:
        raise NotFoundError('Producto no encontrado o inactivo')

    checkout = get_checkout()
    if not product.is_service and product.stock_quantity < checkout.quantity_of(product.id) + qty:
        raise BusinessLogicError(
            f'Stock insuficiente para "{product.name}". Disponible: {product.stock_quantity}'
        )
    checkout.add_item(product.to_cart_item(qty))
    payload = _checkout_payload(db_session, checkout)
    save_checkout(checkout)
    return jsonify(payload)


@pos_bp.route('/cart/update', methods=['POST'])
def cart_update():
    db_session = get_session()
    data = _json_body()
    product_id = _parse_int(data.get('product_id'), 'product_id')
    qty = _parse_int(data.get('quantity'), 'quantity')

    checkout = get_checkout()
    if qty > 0:
        product = db_session.get(Product, product_id)
        if product is None:
            raise NotFoundError('Producto no encontrado')
        if not product.is_service and product.stock_quantity < qty:
            raise BusinessLogicError(
                f'Stock insuficiente para "{product.name}". Disponible: {product.stock_quantity}'
            )
    checkout.update_quantity(product_id, qty)
    payload = _checkout_payload(db_session, checkout)
    save_checkout(checkout)
    return jsonify(payload)


@pos_bp.route('/cart/remove', methods=['POST'])
def cart_remove():
    db_session = get_session()
    product_id = _parse_int(_json_body().get('product_id'), 'product_id')
    checkout = get_checkout()
    checkout.remove_item(product_id)
    payload = _checkout_payload(db_session, checkout)
    save_checkout(checkout)
    return jsonify(payload)


@pos_bp.route('/checkout/options', methods=['POST'])
def checkout_options():
    """
    Update checkout options: discount, customer, linked repairs and payment method.

    Only the keys present in the body are changed. Selecting a wholesale
    customer turns wholesale pricing on unless ``is_wholesale`` is also sent.
    """
    db_session = get_session()
    data = _json_body()
    checkout = get_checkout()
    checkout.ensure_editable()

    if 'discount_percent' in data:
        checkout.discount_percent = to_decimal(data.get('discount_percent'))

    if 'customer_id' in data:
        customer_id = data.get('customer_id')
        if customer_id in (None, ''):
            checkout.customer_id = None
            checkout.is_wholesale = False
        else:
            customer = db_session.get(Customer, _parse_int(customer_id, 'customer_id'))
            if customer is None:
                raise NotFoundError('Cliente no encontrado')
            checkout.customer_id = customer.id
            checkout.is_wholesale = bool(customer.is_wholesale)

    if 'is_wholesale' in data:
        checkout.is_wholesale = bool(data.get('is_wholesale'))

    if 'repair_ids' in data:
        checkout.repair_ids = [_parse_int(rid, 'repair_ids') for rid in data.get('repair_ids') or []]
    if 'mark_delivered' in data:
        checkout.mark_delivered = bool(data.get('mark_delivered'))
    if 'use_final_cost_from_sale' in data:
        checkout.use_final_cost_from_sale = bool(data.get('use_final_cost_from_sale'))

    if 'payment_method' in data:
        method = data.get('payment_method')
        if method == 'mixed':
            checkout.is_mixed_payment = True
        else:
            checkout.payment_method = normalize_payment_method(method)
            checkout.is_mixed_payment = False
            checkout.ledger.clear()
    if 'cash_received' in data:
        checkout.cash_received = to_decimal(data.get('cash_received'))
    if 'card_number' in data:
        checkout.card_number = str(data.get('card_number') or '')
    if 'transfer_reference' in data:
        checkout.transfer_reference = str(data.get('transfer_reference') or '')
    if 'installment_count' in data:
        count = _parse_int(data.get('installment_count'), 'installment_count')
        if count < 1:
            raise ValidationError('La cantidad de cuotas debe ser al menos 1')
        checkout.installment_count = count

    payload = _checkout_payload(db_session, checkout)
    save_checkout(checkout)
    return jsonify(payload)


@pos_bp.route('/payments/splits', methods=['POST'])
def add_split():
    """Add a partial payment to a mixed-payment checkout."""
    db_session = get_session()
    data = _json_body()
    checkout = get_checkout()
    checkout.ensure_editable()
    # Make sure the ledger total reflects the current cart
    checkout_service.calculate_checkout(db_session, checkout, _tax_config(), _wholesale_rate())
    checkout.is_mixed_payment = True

    reference = data.get('reference') or data.get('card_number')
    split_id = checkout.ledger.add_split(data.get('method'), data.get('amount'), reference)

    payload = _checkout_payload(db_session, checkout)
    payload['split_id'] = split_id
    save_checkout(checkout)
    return jsonify(payload), 201


@pos_bp.route('/payments/splits/<split_id>', methods=['DELETE'])
def remove_split(split_id):
    db_session = get_session()
    checkout = get_checkout()
    checkout.ensure_editable()
    checkout.ledger.remove_split(split_id)
    payload = _checkout_payload(db_session, checkout)
    save_checkout(checkout)
    return jsonify(payload)


@pos_bp.route('/checkout/confirm', methods=['POST'])
def confirm():
    """
    Confirm the sale (or retry a failed confirmation).

    Guard failures answer with the error and leave the checkout unchanged.
    A finalization failure answers 200 with payment_status 'failed' and the
    error message, so the terminal can offer a retry.
    """
    db_session = get_session()
    checkout = get_checkout()
    checkout_service.confirm_checkout(
        db_session,
        checkout,
        tax_config=_tax_config(),
        wholesale_discount_rate=_wholesale_rate(),
        installment_frequency=current_app.config.get('DEFAULT_INSTALLMENT_FREQUENCY', 'monthly')
    )
    save_checkout(checkout)
    payload = _checkout_payload(db_session, checkout)
    return jsonify(payload)


@pos_bp.route('/checkout/close', methods=['POST'])
def close():
    """Close the result dialog and start a new checkout."""
    db_session = get_session()
    checkout = checkout_service.close_checkout(get_checkout())
    save_checkout(checkout)
    return jsonify(_checkout_payload(db_session, checkout))


@pos_bp.route('/checkout/reset', methods=['POST'])
def reset():
    db_session = get_session()
    checkout = get_checkout()
    if checkout.is_processing:
        raise BusinessLogicError('La venta se está procesando', status_code=409)
    checkout.reset()
    save_checkout(checkout)
    return jsonify(_checkout_payload(db_session, checkout))


@pos_bp.route('/customers/<int:customer_id>/repairs', methods=['GET'])
def deliverable_repairs(customer_id):
    """Repairs of the customer that can still be charged in a checkout."""
    repairs = repair_service.list_deliverable_repairs(get_session(), customer_id)
    return jsonify(serialize_value({
        'status': 'success',
        'repairs': [
            {
                'id': r.id,
                'device': r.device,
                'status': r.status.value,
                'cost': repair_service.repair_base_cost(r),
            }
            for r in repairs
        ],
    }))
