"""
Unit tests for the payment split ledger and checkout session.
"""

import pytest
from decimal import Decimal

from repairpos.exceptions import ValidationError, BusinessLogicError
from repairpos.services.payment_split_service import (
    PaymentSplitLedger, CheckoutSession, PaymentStatusState, normalize_payment_method
)


class TestPaymentSplitLedger:
    """Tests for PaymentSplitLedger."""

    def test_mixed_payment_completes_total(self):
        ledger = PaymentSplitLedger(100)
        ledger.add_split('cash', 50)
        ledger.add_split('card', 30, '4242')

        assert ledger.total_paid() == Decimal('80')
        assert ledger.remaining() == Decimal('20')
        assert ledger.can_confirm() is False

        ledger.add_split('transfer', 20, 'TRX-998')

        assert ledger.remaining() == Decimal('0')
        assert ledger.can_confirm() is True

    def test_split_ids_are_unique(self):
        ledger = PaymentSplitLedger(100)
        first = ledger.add_split('cash', 10)
        second = ledger.add_split('cash', 10)

        assert first != second

    @pytest.mark.parametrize('method, amount, reference', [
        ('cash', 0, None),
        ('cash', -5, None),
        ('cash', 'abc', None),
        ('cash', '100.01', None),
        ('card', 10, '123'),
        ('card', 10, '12345'),
        ('transfer', 10, ''),
        ('transfer', 10, '   '),
        ('cheque', 10, None),
    ])
    def test_rejected_split_leaves_ledger_untouched(self, method, amount, reference):
        ledger = PaymentSplitLedger(100)

        with pytest.raises(ValidationError):
            ledger.add_split(method, amount, reference)

        assert ledger.entries == []
        assert ledger.remaining() == Decimal('100')

    def test_split_over_remaining_is_rejected_after_partial_payment(self):
        ledger = PaymentSplitLedger(100)
        ledger.add_split('cash', 70)

        with pytest.raises(ValidationError) as exc:
            ledger.add_split('cash', 31)

        assert exc.value.payload == {'remaining': '30.00'}
        assert len(ledger.entries) == 1
        assert ledger.total_paid() <= ledger.total

    def test_card_split_stores_last_four_digits(self):
        ledger = PaymentSplitLedger(100)
        ledger.add_split('card', 40, '42-42')

        assert ledger.entries[0]['card_last4'] == '4242'

    def test_transfer_split_stores_reference(self):
        ledger = PaymentSplitLedger(100)
        ledger.add_split('transfer', 40, ' TRX-1 ')

        assert ledger.entries[0]['reference'] == 'TRX-1'

    def test_remove_split_is_idempotent(self):
        ledger = PaymentSplitLedger(100)
        split_id = ledger.add_split('cash', 60)

        ledger.remove_split(split_id)
        ledger.remove_split(split_id)
        ledger.remove_split('missing')

        assert ledger.entries == []
        assert ledger.remaining() == Decimal('100')

    def test_remaining_plus_paid_equals_total(self):
        ledger = PaymentSplitLedger(Decimal('99.99'))
        for amount in ('10.01', '33.33', '0.65'):
            ledger.add_split('cash', amount)
            assert abs(ledger.remaining() + ledger.total_paid() - ledger.total) <= Decimal('0.01')

    def test_credit_amount(self):
        ledger = PaymentSplitLedger(100)
        ledger.add_split('cash', 40)
        ledger.add_split('credit', 60)

        assert ledger.credit_amount() == Decimal('60')

    def test_lowered_total_drops_newest_entries(self):
        ledger = PaymentSplitLedger(100)
        ledger.add_split('cash', 50)
        ledger.add_split('card', 50, '1111')

        ledger.set_total(60)

        assert [e['method'] for e in ledger.entries] == ['cash']
        assert ledger.remaining() == Decimal('10')

    def test_list_round_trip(self):
        ledger = PaymentSplitLedger(100)
        ledger.add_split('card', 25, '9876')

        restored = PaymentSplitLedger.from_list(ledger.total, ledger.to_list())

        assert restored.total_paid() == Decimal('25')
        assert restored.entries[0]['card_last4'] == '9876'


class TestCheckoutSession:
    """Tests for CheckoutSession."""

    def test_add_item_merges_quantities(self):
        checkout = CheckoutSession()
        checkout.add_item({'id': 1, 'name': 'A', 'unit_price': '10', 'quantity': 1})
        checkout.add_item({'id': 1, 'name': 'A', 'unit_price': '10', 'quantity': 2})

        assert checkout.quantity_of(1) == 3
        assert len(checkout.cart) == 1

    def test_update_to_zero_removes_item(self):
        checkout = CheckoutSession()
        checkout.add_item({'id': 1, 'name': 'A', 'unit_price': '10', 'quantity': 1})
        checkout.update_quantity(1, 0)

        assert checkout.cart == []

    def test_transitions(self):
        checkout = CheckoutSession()
        checkout.transition(PaymentStatusState.PROCESSING)
        checkout.transition(PaymentStatusState.FAILED)
        checkout.transition(PaymentStatusState.PROCESSING)
        checkout.transition(PaymentStatusState.SUCCESS)

        with pytest.raises(BusinessLogicError):
            checkout.transition(PaymentStatusState.PROCESSING)

    def test_idle_cannot_skip_processing(self):
        checkout = CheckoutSession()

        with pytest.raises(BusinessLogicError):
            checkout.transition(PaymentStatusState.SUCCESS)

    def test_cart_is_locked_while_processing(self):
        checkout = CheckoutSession()
        checkout.transition(PaymentStatusState.PROCESSING)

        with pytest.raises(BusinessLogicError):
            checkout.add_item({'id': 1, 'name': 'A', 'unit_price': '10', 'quantity': 1})

    def test_reset_restores_initial_state(self):
        checkout = CheckoutSession()
        checkout.add_item({'id': 1, 'name': 'A', 'unit_price': '10', 'quantity': 1})
        checkout.payment_method = 'card'
        checkout.is_mixed_payment = True
        checkout.ledger = PaymentSplitLedger(10)
        checkout.ledger.add_split('cash', 5)
        old_key = checkout.idempotency_key

        checkout.reset()

        assert checkout.cart == []
        assert checkout.ledger.entries == []
        assert checkout.payment_method == 'cash'
        assert checkout.is_mixed_payment is False
        assert checkout.payment_status == PaymentStatusState.IDLE
        assert checkout.idempotency_key != old_key

    def test_dict_round_trip(self):
        checkout = CheckoutSession()
        checkout.add_item({'id': 7, 'name': 'A', 'unit_price': '10', 'quantity': 2})
        checkout.discount_percent = Decimal('5')
        checkout.repair_ids = [3]
        checkout.is_mixed_payment = True
        checkout.ledger = PaymentSplitLedger(19)
        checkout.ledger.add_split('transfer', 9, 'REF-1')
        checkout.progress['stock_applied'] = [7]

        restored = CheckoutSession.from_dict(checkout.to_dict())

        assert restored.cart == checkout.cart
        assert restored.discount_percent == Decimal('5')
        assert restored.repair_ids == [3]
        assert restored.ledger.remaining() == Decimal('10')
        assert restored.idempotency_key == checkout.idempotency_key
        assert restored.progress['stock_applied'] == [7]

    def test_from_empty_dict(self):
        checkout = CheckoutSession.from_dict(None)
        assert checkout.payment_status == PaymentStatusState.IDLE


def test_normalize_payment_method():
    assert normalize_payment_method(' Card ') == 'card'
    with pytest.raises(ValidationError):
        normalize_payment_method('bitcoin')
