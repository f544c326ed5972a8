"""
Integration tests for stock movements and alerts.
"""

import pytest

from repairpos.exceptions import StockConflictError, NotFoundError, ValidationError
from repairpos.models import Product, StockMovement, StockAlert, StockAlertType, StockMovementType
from repairpos.services.stock_service import (
    apply_movement, derive_alert_state, list_active_alerts, list_movements, signed_delta
)


class TestApplyMovement:
    """Tests for apply_movement."""

    def test_salida_decrements_stock(self, session, product):
        result = apply_movement(session, product.id, 3, 'salida', 'Venta mostrador')

        assert result['previous_stock'] == 10
        assert result['new_stock'] == 7
        assert result['signed_quantity'] == -3
        assert session.get(Product, product.id).stock_quantity == 7

    def test_entrada_ignores_sign(self, session, product):
        result = apply_movement(session, product.id, -4, StockMovementType.ENTRADA, 'Compra proveedor')

        assert result['signed_quantity'] == 4
        assert result['new_stock'] == 14

    def test_ajuste_uses_given_sign(self, session, product):
        result = apply_movement(session, product.id, -2, 'ajuste', 'Conteo físico')

        assert result['previous_stock'] == 10
        assert result['new_stock'] == 8

    def test_every_call_writes_one_consistent_movement(self, session, product):
        deltas = [('entrada', 5), ('salida', 7), ('ajuste', -1), ('salida', 2)]
        for movement_type, qty in deltas:
            apply_movement(session, product.id, qty, movement_type, 'Prueba')

        movements = session.query(StockMovement).filter_by(product_id=product.id).order_by(StockMovement.id).all()

        assert len(movements) == len(deltas)
        for movement in movements:
            assert movement.new_stock == movement.previous_stock + movement.quantity
        for earlier, later in zip(movements, movements[1:]):
            assert later.previous_stock == earlier.new_stock
        assert session.get(Product, product.id).stock_quantity == movements[-1].new_stock == 5

    def test_underflow_is_rejected(self, session, product):
        with pytest.raises(StockConflictError) as exc:
            apply_movement(session, product.id, 11, 'salida', 'Venta')

        assert exc.value.status_code == 409
        assert exc.value.payload['available'] == '10'
        assert session.get(Product, product.id).stock_quantity == 10
        assert session.query(StockMovement).count() == 0

    def test_missing_product(self, session):
        with pytest.raises(NotFoundError):
            apply_movement(session, 9999, 1, 'entrada', 'Compra')

    def test_zero_quantity_and_missing_reason(self, session, product):
        with pytest.raises(ValidationError):
            apply_movement(session, product.id, 0, 'ajuste', 'Nada')
        with pytest.raises(ValidationError):
            apply_movement(session, product.id, 1, 'entrada', '  ')
        with pytest.raises(ValidationError):
            apply_movement(session, product.id, 1, 'robo', 'Motivo')

    def test_reference_is_stored(self, session, product):
        apply_movement(session, product.id, 1, 'salida', 'Venta #5', reference='VENTA-5')

        movement = list_movements(session, product_id=product.id)[0]
        assert movement.reference == 'VENTA-5'
        assert movement.type == StockMovementType.SALIDA


class TestStockAlerts:
    """Tests for alert derivation after movements."""

    def test_derive_alert_state(self):
        assert derive_alert_state(0, 2) == StockAlertType.OUT_OF_STOCK
        assert derive_alert_state(2, 2) == StockAlertType.LOW_STOCK
        assert derive_alert_state(1, 2) == StockAlertType.LOW_STOCK
        assert derive_alert_state(3, 2) is None
        assert derive_alert_state(5, None) is None

    def test_low_then_out_then_resolved(self, session, product):
        low = apply_movement(session, product.id, 8, 'salida', 'Venta')
        assert low['alert'] == 'low_stock'

        out = apply_movement(session, product.id, 2, 'salida', 'Venta')
        assert out['alert'] == 'out_of_stock'

        active = session.query(StockAlert).filter_by(product_id=product.id, is_active=True).all()
        assert [a.alert_type for a in active] == [StockAlertType.OUT_OF_STOCK]

        restock = apply_movement(session, product.id, 20, 'entrada', 'Compra')
        assert restock['alert'] is None
        assert session.query(StockAlert).filter_by(product_id=product.id, is_active=True).count() == 0
        assert session.query(StockAlert).filter(StockAlert.resolved_at.isnot(None)).count() == 2

    def test_repeated_low_stock_keeps_one_alert(self, session, product):
        apply_movement(session, product.id, 8, 'salida', 'Venta')
        apply_movement(session, product.id, 1, 'salida', 'Venta')

        alerts = list_active_alerts(session)
        assert len(alerts) == 1
        assert alerts[0]['alert_type'] == 'low_stock'
        assert alerts[0]['stock_quantity'] == 1
        assert alerts[0]['product_name'] == 'Pantalla Galaxy A10'


def test_signed_delta():
    assert signed_delta('entrada', -3) == 3
    assert signed_delta('salida', 3) == -3
    assert signed_delta('ajuste', -3) == -3
