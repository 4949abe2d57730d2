"""Tests for participant share validation."""

import pytest
from decimal import Decimal

from groupledger.models.transaction import Participant
from groupledger.validation import (
    UnbalancedSharesError,
    ensure_shares_balance,
    shares_balance,
    total_shares,
)


class TestSharesBalance:
    """Tests for shares_balance()."""

    def test_three_way_split_balances(self):
        """Test 33.34 + 33.33 + 33.33 reconstructs 100."""
        participants = [{"share": 33.34}, {"share": 33.33}, {"share": 33.33}]
        assert shares_balance(100, participants) is True

    def test_one_unit_short_does_not_balance(self):
        """Test 50 + 49 does not reconstruct 100."""
        assert shares_balance(100, [{"share": 50}, {"share": 49}]) is False

    def test_difference_just_under_tolerance(self):
        assert shares_balance(Decimal("100"), [{"share": "99.995"}]) is True

    def test_difference_equal_to_tolerance_fails(self):
        """Test the tolerance bound is strict."""
        assert shares_balance(Decimal("100"), [{"share": "99.99"}]) is False

    def test_tolerance_is_absolute(self):
        """Test large amounts get the same absolute tolerance."""
        assert shares_balance(1_000_000, [{"share": "999999.99"}]) is False

    def test_custom_tolerance(self):
        assert shares_balance(100, [{"share": 99}], tolerance=2) is True

    def test_empty_participants_only_balance_zero(self):
        assert shares_balance(0, []) is True
        assert shares_balance(10, []) is False

    def test_accepts_participant_models(self):
        participants = [
            Participant(user_id="alice", share=Decimal("60")),
            Participant(user_id="bob", share=Decimal("40")),
        ]
        assert shares_balance(Decimal("100"), participants) is True


class TestTotalShares:
    """Tests for total_shares()."""

    def test_sum_is_exact_decimal(self):
        total = total_shares([{"share": 0.1}, {"share": 0.2}])
        assert total == Decimal("0.3")

    def test_empty(self):
        assert total_shares([]) == Decimal("0")


class TestEnsureSharesBalance:
    """Tests for ensure_shares_balance()."""

    def test_returns_total(self):
        total = ensure_shares_balance(90, [{"share": 45}, {"share": 45}])
        assert total == Decimal("90")

    def test_raises_with_details(self):
        with pytest.raises(UnbalancedSharesError) as exc_info:
            ensure_shares_balance(100, [{"share": 50}, {"share": 49}])
        error = exc_info.value
        assert error.amount == Decimal("100")
        assert error.total == Decimal("99")
        assert error.difference == Decimal("1")
        assert error.http_status == 400

    def test_accepts_generator(self):
        shares = ({"share": s} for s in (25, 25, 50))
        assert ensure_shares_balance(100, shares) == Decimal("100")
