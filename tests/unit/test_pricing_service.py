"""
Unit tests for the pricing calculator.
"""

import pytest
from decimal import Decimal

from repairpos.services.pricing_service import (
    TaxConfig, compute_cart_calculations, applied_unit_price, calculate_repair_total,
    calculate_change, calculate_profit_margin, calculate_markup, extract_inclusive_tax
)


def item(item_id, price, qty, wholesale_price=None, is_service=False):
    return {
        'id': item_id,
        'name': f'Item {item_id}',
        'unit_price': str(price),
        'wholesale_unit_price': str(wholesale_price) if wholesale_price is not None else None,
        'quantity': qty,
        'is_service': is_service,
    }


EXCLUSIVE_16 = TaxConfig('0.16', prices_include_tax=False)
INCLUSIVE_10 = TaxConfig('0.10', prices_include_tax=True)


class TestCartCalculations:
    """Tests for compute_cart_calculations."""

    def test_discount_and_exclusive_tax(self):
        """Cart of 2 x 100, 10% off, 16% added tax."""
        calc = compute_cart_calculations(
            [item(1, 100, 2)], discount_percent=10, is_wholesale=False, tax_config=EXCLUSIVE_16
        )

        assert calc['subtotal'] == Decimal('200')
        assert calc['general_discount_amount'] == Decimal('20')
        assert calc['subtotal_after_discounts'] == Decimal('180')
        assert calc['tax'] == Decimal('28.80')
        assert calc['total'] == Decimal('208.80')

    def test_explicit_wholesale_price(self):
        """Explicit wholesale price wins; no extra rate reduction."""
        calc = compute_cart_calculations(
            [item(1, 100, 3, wholesale_price=80)], is_wholesale=True, wholesale_discount_rate=10
        )

        assert calc['lines'][0]['unit_price'] == Decimal('80')
        assert calc['subtotal'] == Decimal('240')
        assert calc['wholesale_discount_amount'] == Decimal('60')
        assert calc['total'] == Decimal('240')

    def test_wholesale_rate_without_explicit_price(self):
        calc = compute_cart_calculations([item(1, 100, 2)], is_wholesale=True, wholesale_discount_rate=10)

        assert calc['lines'][0]['unit_price'] == Decimal('90')
        assert calc['subtotal'] == Decimal('180')
        assert calc['subtotal_non_wholesale'] == Decimal('200')
        assert calc['wholesale_discount_amount'] == Decimal('20')

    def test_wholesale_discount_not_reported_for_retail(self):
        calc = compute_cart_calculations([item(1, 100, 2, wholesale_price=80)], is_wholesale=False)

        assert calc['lines'][0]['unit_price'] == Decimal('100')
        assert calc['wholesale_discount_amount'] == Decimal('0')

    def test_services_keep_list_price_for_wholesale(self):
        service = item(1, 20, 1, is_service=True)
        assert applied_unit_price(service, True, 10) == Decimal('20')

    @pytest.mark.parametrize('discount, expected_discount', [
        (-5, Decimal('0')),
        ('abc', Decimal('0')),
        (None, Decimal('0')),
        (150, Decimal('200')),
    ])
    def test_discount_is_clamped(self, discount, expected_discount):
        calc = compute_cart_calculations([item(1, 100, 2)], discount_percent=discount)

        assert calc['general_discount_amount'] == expected_discount
        assert calc['total'] >= 0

    def test_negative_quantity_counts_as_zero(self):
        calc = compute_cart_calculations([item(1, 100, -3), item(2, 10, 1)])

        assert calc['lines'][0]['quantity'] == 0
        assert calc['subtotal'] == Decimal('10')

    def test_inclusive_tax_is_extracted(self):
        calc = compute_cart_calculations([item(1, 110, 1)], tax_config=INCLUSIVE_10)

        assert calc['tax'] == Decimal('10.00')
        assert calc['taxable_base'] == Decimal('100.00')
        assert calc['total'] == Decimal('110')

    def test_linked_repair_cost_has_its_own_tax(self):
        calc = compute_cart_calculations(
            [item(1, 100, 2)], discount_percent=10, tax_config=EXCLUSIVE_16, linked_repair_cost=[Decimal('50')]
        )

        assert calc['has_repairs'] is True
        assert calc['repair_subtotal'] == Decimal('50')
        assert calc['repair_tax'] == Decimal('8.00')
        assert calc['repair_cost_with_tax'] == Decimal('58.00')
        assert calc['tax'] == Decimal('28.80')
        assert calc['total'] == Decimal('266.80')

    def test_repair_only_checkout(self):
        calc = compute_cart_calculations([], linked_repair_cost=Decimal('150'), tax_config=INCLUSIVE_10)

        assert calc['subtotal'] == Decimal('0')
        assert calc['repair_cost_with_tax'] == Decimal('150.00')
        assert calc['repair_tax'] == Decimal('13.64')
        assert calc['total'] == Decimal('150.00')

    @pytest.mark.parametrize('cart, discount, repair', [
        ([item(1, '19.99', 3)], 0, None),
        ([item(1, '19.99', 3), item(2, '0.33', 7)], '12.5', None),
        ([item(1, '1000', 1)], 100, Decimal('35.50')),
        ([], 0, Decimal('99.99')),
    ])
    def test_total_is_sum_of_parts(self, cart, discount, repair):
        """total = subtotal_after_discounts + tax + repair_cost_with_tax, never negative."""
        calc = compute_cart_calculations(cart, discount_percent=discount, linked_repair_cost=repair,
                                         tax_config=EXCLUSIVE_16)

        assert calc['total'] == calc['subtotal_after_discounts'] + calc['tax'] + calc['repair_cost_with_tax']
        assert calc['total'] >= 0

    def test_inclusive_total_is_net_plus_tax(self):
        calc = compute_cart_calculations([item(1, '19.99', 3)], linked_repair_cost=Decimal('40'),
                                         tax_config=INCLUSIVE_10)

        assert calc['total'] == calc['taxable_base'] + calc['tax'] + calc['repair_cost_with_tax']

    def test_same_input_same_output(self):
        cart = [item(1, '33.33', 3, wholesale_price='30'), item(2, '10', 1, is_service=True)]
        first = compute_cart_calculations(cart, 7, True, 10, [Decimal('12.5')], EXCLUSIVE_16, 500)
        second = compute_cart_calculations(cart, 7, True, 10, [Decimal('12.5')], EXCLUSIVE_16, 500)

        assert first == second

    def test_change_and_remaining(self):
        paid_in_full = compute_cart_calculations([item(1, 100, 2)], 10, tax_config=EXCLUSIVE_16,
                                                 amount_tendered=250)
        short = compute_cart_calculations([item(1, 100, 2)], 10, tax_config=EXCLUSIVE_16,
                                          amount_tendered=100)

        assert paid_in_full['change'] == Decimal('41.20')
        assert paid_in_full['remaining'] == Decimal('0')
        assert short['change'] == Decimal('0')
        assert short['remaining'] == Decimal('108.80')


class TestTaxConfig:
    """Tests for TaxConfig normalization."""

    def test_percentage_rate_is_normalized(self):
        assert TaxConfig(16).rate == Decimal('0.16')

    def test_negative_rate_is_zero(self):
        assert TaxConfig('-0.2').rate == Decimal('0')

    def test_from_app_config(self):
        config = TaxConfig.from_app_config({'TAX_RATE': '0.21', 'PRICES_INCLUDE_TAX': True})
        assert config.rate == Decimal('0.21')
        assert config.prices_include_tax is True

    def test_extract_zero(self):
        assert extract_inclusive_tax(0, Decimal('0.1')) == (Decimal('0.00'), Decimal('0'))


class TestRepairTotals:
    """Tests for calculate_repair_total."""

    def test_tax_included(self):
        result = calculate_repair_total(110, 220, tax_rate=10, prices_include_tax=True)

        assert result['subtotal'] == Decimal('300.00')
        assert result['tax_amount'] == Decimal('30.00')
        assert result['total'] == Decimal('330.00')
        assert result['breakdown']['labor_tax'] == Decimal('10.00')
        assert result['breakdown']['parts_tax'] == Decimal('20.00')

    def test_tax_added(self):
        result = calculate_repair_total(100, 200, tax_rate=10, prices_include_tax=False)

        assert result['subtotal'] == Decimal('300.00')
        assert result['tax_amount'] == Decimal('30.00')
        assert result['total'] == Decimal('330.00')

    def test_percentage_discount_is_spread(self):
        result = calculate_repair_total(110, 220, tax_rate=10, discount_percentage=10)

        assert result['discount_amount'] == Decimal('33.00')
        assert result['total'] == Decimal('297.00')
        assert result['breakdown']['labor_subtotal'] == Decimal('90.00')

    def test_zero_costs(self):
        result = calculate_repair_total(0, 0)

        assert result['total'] == Decimal('0')
        assert result['breakdown']['labor_tax'] == Decimal('0')


class TestHelpers:
    """Tests for change and margin helpers."""

    def test_change_never_negative(self):
        assert calculate_change(100, 80) == Decimal('0')
        assert calculate_change(100, 150) == Decimal('50.00')

    def test_profit_margin_and_markup(self):
        assert calculate_profit_margin(60, 100) == Decimal('40.00')
        assert calculate_markup(60, 90) == Decimal('50.00')
        assert calculate_profit_margin(60, 0) == Decimal('0')
        assert calculate_markup(0, 90) == Decimal('0')
