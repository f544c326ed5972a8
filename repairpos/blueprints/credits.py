"""Customer credit blueprint: credit summary and installment payments (JSON)."""
from flask import Blueprint, request, jsonify, current_app

from repairpos.database import get_session
from repairpos.models import Customer
from repairpos.services import credit_service
from repairpos.services.payment_split_service import normalize_payment_method
from repairpos.services.pricing_service import to_decimal
from repairpos.utils.serialization import serialize_value

credits_bp = Blueprint('credits', __name__, url_prefix='/credits')


@credits_bp.route('/customers/<int:customer_id>/summary', methods=['GET'])
def customer_summary(customer_id):
    """Credit summary; ``?amount=`` adds eligibility and utilization state for a proposed sale."""
    db_session = get_session()
    summary = credit_service.load_credit_summary(db_session, customer_id)
    payload = {'status': 'success', 'summary': summary}

    amount = request.args.get('amount')
    if amount:
        proposed = to_decimal(amount)
        customer = db_session.get(Customer, customer_id)
        threshold = current_app.config.get('CREDIT_NEAR_LIMIT_PERCENT', 80)
        payload['proposed_amount'] = proposed
        payload['can_sell_on_credit'] = credit_service.can_sell_on_credit(customer, proposed, summary)
        payload['utilization_state'] = credit_service.classify_credit_utilization(summary, proposed, threshold)
    return jsonify(serialize_value(payload))


@credits_bp.route('/customers/<int:customer_id>/payments', methods=['POST'])
def register_payment(customer_id):
    """Body: {amount, payment_method?, reference?}"""
    data = request.get_json(silent=True) or {}
    method = normalize_payment_method(data.get('payment_method') or 'cash')
    result = credit_service.record_credit_payment(
        get_session(),
        customer_id,
        data.get('amount'),
        payment_method=method,
        reference=data.get('reference')
    )
    return jsonify(serialize_value({'status': 'success', 'payment': result})), 201
