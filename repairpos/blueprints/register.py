"""Cash register blueprint (JSON)."""
from flask import Blueprint, request, jsonify

from repairpos.database import get_session
from repairpos.services import cash_register_service

register_bp = Blueprint('register', __name__, url_prefix='/register')


@register_bp.route('/status', methods=['GET'])
def status():
    register = cash_register_service.get_open_register(get_session())
    return jsonify({'status': 'success', 'register': cash_register_service.register_to_dict(register)})


@register_bp.route('/open', methods=['POST'])
def open_register():
    data = request.get_json(silent=True) or {}
    register = cash_register_service.open_register(
        get_session(),
        data.get('opening_amount', 0),
        opened_by=data.get('opened_by')
    )
    return jsonify({'status': 'success', 'register': cash_register_service.register_to_dict(register)}), 201


@register_bp.route('/close', methods=['POST'])
def close_register():
    data = request.get_json(silent=True) or {}
    register = cash_register_service.close_register(
        get_session(),
        data.get('closing_amount'),
        notes=data.get('notes')
    )
    return jsonify({'status': 'success', 'register': cash_register_service.register_to_dict(register)})
