"""
Unit tests for credit summary and eligibility rules (no database).
"""

import pytest
from datetime import date
from decimal import Decimal

from repairpos.exceptions import ValidationError
from repairpos.models import (
    Customer, CustomerCredit, CreditInstallment, CreditStatus, InstallmentStatus, InstallmentFrequency
)
from repairpos.services.credit_service import (
    get_credit_summary, can_sell_on_credit, classify_credit_utilization,
    build_installment_schedule, calculate_days_overdue, due_date_for
)

TODAY = date(2026, 3, 15)


def make_customer(limit):
    return Customer(id=1, name='Cliente', credit_limit=Decimal(str(limit)), current_balance=Decimal('0'))


def make_credit(credit_id, principal, status=CreditStatus.ACTIVE):
    return CustomerCredit(
        id=credit_id, customer_id=1, principal=Decimal(str(principal)), installment_count=1,
        frequency=InstallmentFrequency.MONTHLY, start_date=date(2026, 1, 1), status=status
    )


def make_installment(inst_id, credit_id, amount, due, paid=0, status=InstallmentStatus.PENDING):
    return CreditInstallment(
        id=inst_id, credit_id=credit_id, installment_number=inst_id, due_date=due,
        amount=Decimal(str(amount)), amount_paid=Decimal(str(paid)), status=status
    )


class TestCreditSummary:
    """Tests for get_credit_summary."""

    def test_near_limit_sale(self):
        """Limit 1000 with 700 used: 250 is sellable and pushes utilization to 95%."""
        customer = make_customer(1000)
        credits = [make_credit(1, 700)]
        installments = [make_installment(1, 1, 700, date(2026, 4, 1))]

        summary = get_credit_summary(customer, credits, installments, TODAY)

        assert summary['used_credit'] == Decimal('700')
        assert summary['available_credit'] == Decimal('300')
        assert summary['total_credit'] == Decimal('1000')
        assert summary['credit_utilization_percent'] == Decimal('70.00')
        assert can_sell_on_credit(customer, Decimal('250'), summary) is True
        assert classify_credit_utilization(summary, Decimal('250')) == 'near_limit'

    def test_overdue_and_partial_payments(self):
        customer = make_customer(1000)
        credits = [make_credit(1, 300)]
        installments = [
            make_installment(1, 1, 100, date(2026, 2, 1), paid=100, status=InstallmentStatus.PAID),
            make_installment(2, 1, 100, date(2026, 3, 1), paid=40),
            make_installment(3, 1, 100, date(2026, 4, 1)),
        ]

        summary = get_credit_summary(customer, credits, installments, TODAY)

        assert summary['used_credit'] == Decimal('160')
        assert summary['overdue_amount'] == Decimal('60')
        assert summary['total_paid'] == Decimal('140')
        assert summary['next_payment']['installment_number'] == 2
        assert summary['next_payment']['amount'] == Decimal('60')
        assert summary['next_payment']['days_overdue'] == 14
        assert summary['next_payment']['due_date'] == '2026-03-01'

    def test_late_installments_count_as_overdue(self):
        customer = make_customer(500)
        installments = [make_installment(1, 1, 80, date(2026, 3, 20), status=InstallmentStatus.LATE)]

        summary = get_credit_summary(customer, [make_credit(1, 80)], installments, TODAY)

        assert summary['overdue_amount'] == Decimal('80')

    def test_unscheduled_active_credit_counts_principal(self):
        customer = make_customer(1000)
        credits = [make_credit(1, 250), make_credit(2, 400, status=CreditStatus.COMPLETED)]

        summary = get_credit_summary(customer, credits, [], TODAY)

        assert summary['used_credit'] == Decimal('250')
        assert summary['pending_sales'] == 1
        assert summary['completed_credits'] == 1

    def test_zero_limit(self):
        customer = make_customer(0)
        summary = get_credit_summary(customer, [], [], TODAY)

        assert summary['total_credit'] == Decimal('0')
        assert summary['credit_utilization_percent'] == Decimal('0')
        assert can_sell_on_credit(customer, 1, summary) is False

    def test_over_limit_customer(self):
        customer = make_customer(100)
        installments = [make_installment(1, 1, 150, date(2026, 4, 1))]

        summary = get_credit_summary(customer, [make_credit(1, 150)], installments, TODAY)

        assert summary['available_credit'] == Decimal('0')
        assert summary['credit_utilization_percent'] == Decimal('100.00')

    def test_missing_customer(self):
        summary = get_credit_summary(None, [], [], TODAY)

        assert summary['available_credit'] == Decimal('0')
        assert can_sell_on_credit(None, 1, summary) is False


class TestCreditClassification:
    """Tests for classify_credit_utilization."""

    def summary(self, used, available):
        return {
            'used_credit': Decimal(str(used)),
            'available_credit': Decimal(str(available)),
            'total_credit': Decimal(str(used)) + Decimal(str(available)),
        }

    def test_ok(self):
        assert classify_credit_utilization(self.summary(100, 900), 100) == 'ok'

    def test_exactly_threshold_is_ok(self):
        assert classify_credit_utilization(self.summary(700, 300), 100) == 'ok'

    def test_over_limit(self):
        assert classify_credit_utilization(self.summary(700, 300), '300.01') == 'over_limit'

    def test_custom_threshold(self):
        assert classify_credit_utilization(self.summary(500, 500), 100, threshold=50) == 'near_limit'


class TestInstallmentSchedule:
    """Tests for installment scheduling."""

    def test_remainder_on_last_installment(self):
        schedule = build_installment_schedule(Decimal('100'), 3, 'monthly', date(2026, 1, 10))

        assert [s['amount'] for s in schedule] == [Decimal('33.33'), Decimal('33.33'), Decimal('33.34')]
        assert sum(s['amount'] for s in schedule) == Decimal('100')

    def test_monthly_due_dates_clamp_day(self):
        schedule = build_installment_schedule(Decimal('90'), 3, 'monthly', date(2026, 1, 31))

        assert [s['due_date'] for s in schedule] == [date(2026, 2, 28), date(2026, 3, 31), date(2026, 4, 30)]

    def test_weekly_and_biweekly(self):
        start = date(2026, 1, 1)
        assert due_date_for(start, 2, InstallmentFrequency.WEEKLY) == date(2026, 1, 15)
        assert due_date_for(start, 2, InstallmentFrequency.BIWEEKLY) == date(2026, 1, 29)

    def test_unknown_frequency(self):
        with pytest.raises(ValidationError):
            build_installment_schedule(Decimal('10'), 1, 'daily', date(2026, 1, 1))


def test_calculate_days_overdue():
    assert calculate_days_overdue(date(2026, 3, 10), TODAY) == 5
    assert calculate_days_overdue(date(2026, 3, 20), TODAY) == 0
    assert calculate_days_overdue(None, TODAY) == 0
