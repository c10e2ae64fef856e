"""Unit tests for money helpers."""

from decimal import Decimal

from utils.money import add, multiply, round2, sum_rounded, to_decimal, within_tolerance


class TestRound2:
    """Tests for round2."""

    def test_half_rounds_away_from_zero(self):
        """Binary float halves still round up."""
        assert round2(2.675) == 2.68
        assert round2(1.005) == 1.01
        assert round2(-2.675) == -2.68

    def test_none_is_zero(self):
        assert round2(None) == 0.0

    def test_decimal_input(self):
        assert round2(Decimal("10.125")) == 10.13


class TestArithmetic:
    """Tests for add, multiply and sum_rounded."""

    def test_multiply_hours_by_rate(self):
        assert multiply(16, 75) == 1200.0
        assert multiply(2.5, 33.33) == 83.33

    def test_add_avoids_float_drift(self):
        assert add(0.1, 0.2) == 0.3

    def test_add_treats_none_as_zero(self):
        assert add(None, 12.5) == 12.5

    def test_sum_rounded(self):
        assert sum_rounded([1200, 3000, 3825, 600, 1110, 500, 1575, 950]) == 12760.0

    def test_sum_rounded_empty(self):
        assert sum_rounded([]) == 0.0


class TestTolerance:
    """Tests for within_tolerance."""

    def test_inside_tolerance(self):
        assert within_tolerance(100.0, 100.01)

    def test_outside_tolerance(self):
        assert not within_tolerance(100.0, 100.02)

    def test_custom_tolerance(self):
        assert within_tolerance(100.0, 100.5, tolerance=1.0)

    def test_to_decimal_uses_shortest_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")
