"""Stock blueprint: movements and low/out-of-stock alerts (JSON)."""
from flask import Blueprint, request, jsonify

from repairpos.database import get_session
from repairpos.exceptions import ValidationError
from repairpos.services import stock_service

stock_bp = Blueprint('stock', __name__, url_prefix='/stock')


@stock_bp.route('/movements', methods=['POST'])
def create_movement():
    """
    Apply a stock movement.

    Body: {product_id, type: entrada|salida|ajuste, quantity, reason, reference?}
    """
    data = request.get_json(silent=True) or {}
    try:
        product_id = int(data.get('product_id'))
    except (TypeError, ValueError):
        raise ValidationError('Debe indicar un producto válido')

    result = stock_service.apply_movement(
        get_session(),
        product_id,
        data.get('quantity'),
        data.get('type'),
        data.get('reason'),
        reference=data.get('reference')
    )
    return jsonify({'status': 'success', 'movement': result}), 201


@stock_bp.route('/movements', methods=['GET'])
def list_movements():
    product_id = request.args.get('product_id', type=int)
    limit = min(request.args.get('limit', 50, type=int), 500)
    movements = stock_service.list_movements(get_session(), product_id=product_id, limit=limit)
    return jsonify({'status': 'success', 'movements': [m.to_dict() for m in movements]})


@stock_bp.route('/alerts', methods=['GET'])
def list_alerts():
    return jsonify({'status': 'success', 'alerts': stock_service.list_active_alerts(get_session())})
