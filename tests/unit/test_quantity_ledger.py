"""
Unit tests for the quantity ledger (pure Decimal arithmetic).
"""
from decimal import Decimal

import pytest

from app.services.quantity_ledger import (
    to_decimal, quantize_money, pending_quantity, line_total, aggregate_total, total_quantity
)


class TestPendingQuantity:
    """Ordered minus received, never negative."""

    def test_partial_receipt(self):
        assert pending_quantity(10, 3) == Decimal('7')

    def test_fully_received(self):
        assert pending_quantity(5, 5) == Decimal('0')

    def test_over_received_is_floored(self):
        assert pending_quantity(5, 8) == Decimal('0')

    def test_decimal_quantities(self):
        assert pending_quantity('2.5', '1.25') == Decimal('1.25')


class TestTotals:
    """Line and document totals."""

    def test_line_total_rounds_to_cents(self):
        assert line_total('3', '0.335') == Decimal('1.01')

    def test_aggregate_with_ancillary_cost(self):
        total = aggregate_total([(2, '50'), (1, '150')], ancillary_costs='20')
        assert total == Decimal('270.00')

    def test_aggregate_without_lines(self):
        assert aggregate_total([]) == Decimal('0.00')

    def test_total_quantity(self):
        assert total_quantity([1, '2.5', Decimal('0.5')]) == Decimal('4.0')

    def test_quantize_money_half_up(self):
        assert quantize_money('1.005') == Decimal('1.01')


class TestToDecimal:
    """Input coercion."""

    def test_float_keeps_its_repr(self):
        assert to_decimal(0.1) == Decimal('0.1')

    def test_none_is_zero(self):
        assert to_decimal(None) == Decimal('0')

    @pytest.mark.parametrize('value', ['abc', True, 'NaN', 'Infinity'])
    def test_rejects_non_numeric(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)
