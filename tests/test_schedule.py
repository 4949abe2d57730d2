"""Tests for the recurring schedule engine."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from groupledger.models.recurring import Frequency, RecurringObligation
from groupledger.models.transaction import Participant, TransactionType
from groupledger.scheduling import (
    add_months,
    add_period,
    build_transaction,
    is_due,
    is_ended,
    mark_executed,
    next_occurrence,
)


def make_obligation(**overrides) -> RecurringObligation:
    data = {
        "group_id": uuid4(),
        "title": "Rent",
        "amount": Decimal("1200"),
        "category": "housing",
        "frequency": Frequency.WEEKLY,
        "start_date": datetime(2024, 1, 1),
        "payer_id": "alice",
    }
    data.update(overrides)
    return RecurringObligation(**data)


class TestAddPeriod:
    """Tests for period arithmetic."""

    def test_fixed_periods(self):
        anchor = datetime(2024, 1, 1, 9, 30)
        assert add_period(anchor, Frequency.DAILY) == datetime(2024, 1, 2, 9, 30)
        assert add_period(anchor, Frequency.WEEKLY) == datetime(2024, 1, 8, 9, 30)
        assert add_period(anchor, Frequency.BIWEEKLY) == datetime(2024, 1, 15, 9, 30)

    def test_accepts_frequency_strings(self):
        assert add_period(datetime(2024, 1, 1), "daily") == datetime(2024, 1, 2)

    def test_monthly_same_day(self):
        assert add_period(datetime(2024, 1, 15), Frequency.MONTHLY) == datetime(2024, 2, 15)

    def test_monthly_from_january_31_rolls_into_march(self):
        """Test Jan 31 + 1 month overflows to 2024-03-02 (leap year)."""
        assert add_period(datetime(2024, 1, 31), Frequency.MONTHLY) == datetime(2024, 3, 2)

    def test_monthly_from_january_31_non_leap_year(self):
        assert add_period(datetime(2023, 1, 31), Frequency.MONTHLY) == datetime(2023, 3, 3)

    def test_monthly_across_year_end(self):
        assert add_period(datetime(2024, 12, 10), Frequency.MONTHLY) == datetime(2025, 1, 10)

    def test_quarterly(self):
        assert add_period(datetime(2024, 1, 15), Frequency.QUARTERLY) == datetime(2024, 4, 15)
        assert add_period(datetime(2024, 11, 30), Frequency.QUARTERLY) == datetime(2025, 3, 2)

    def test_yearly(self):
        assert add_period(datetime(2024, 3, 1), Frequency.YEARLY) == datetime(2025, 3, 1)

    def test_yearly_from_leap_day(self):
        """Test Feb 29 + 1 year overflows to Mar 1."""
        assert add_period(datetime(2024, 2, 29), Frequency.YEARLY) == datetime(2025, 3, 1)

    def test_add_months_keeps_time_of_day(self):
        assert add_months(datetime(2024, 1, 31, 18, 45), 1) == datetime(2024, 3, 2, 18, 45)


class TestNextOccurrence:
    """Tests for next_occurrence()."""

    def test_weekly_scenario(self):
        """Test weekly from 2024-01-01, never run, checked on 2024-01-10."""
        obligation = make_obligation()
        now = datetime(2024, 1, 10)
        assert next_occurrence(obligation, now) == datetime(2024, 1, 8)
        assert is_due(obligation, now) is True

    def test_clamp_returns_now_for_past_occurrence(self):
        obligation = make_obligation()
        now = datetime(2024, 1, 10)
        assert next_occurrence(obligation, now, clamp=True) == now

    def test_clamp_keeps_future_occurrence(self):
        obligation = make_obligation()
        now = datetime(2024, 1, 3)
        assert next_occurrence(obligation, now, clamp=True) == datetime(2024, 1, 8)

    def test_anchors_on_last_processed(self):
        obligation = make_obligation(last_processed=datetime(2024, 1, 9))
        assert next_occurrence(obligation, datetime(2024, 1, 10)) == datetime(2024, 1, 16)

    def test_monthly_from_january_31(self):
        obligation = make_obligation(
            frequency=Frequency.MONTHLY,
            start_date=datetime(2024, 1, 31),
        )
        assert next_occurrence(obligation, datetime(2024, 2, 1)) == datetime(2024, 3, 2)

    def test_inactive_has_no_occurrence(self):
        obligation = make_obligation(is_active=False)
        assert next_occurrence(obligation, datetime(2024, 1, 10)) is None

    def test_ended_has_no_occurrence(self):
        obligation = make_obligation(end_date=datetime(2024, 1, 5))
        assert next_occurrence(obligation, datetime(2024, 1, 10)) is None

    def test_end_date_in_future_still_recurs(self):
        obligation = make_obligation(end_date=datetime(2024, 12, 31))
        assert next_occurrence(obligation, datetime(2024, 1, 10)) == datetime(2024, 1, 8)


class TestIsDue:
    """Tests for is_due()."""

    @pytest.mark.parametrize("frequency", list(Frequency))
    def test_never_due_after_end_date(self, frequency):
        """Test an obligation whose end date has passed is never due."""
        obligation = make_obligation(
            frequency=frequency,
            start_date=datetime(2020, 1, 1),
            end_date=datetime(2020, 6, 1),
        )
        assert is_due(obligation, datetime(2024, 1, 1)) is False

    def test_not_due_before_next_occurrence(self):
        obligation = make_obligation(frequency=Frequency.DAILY)
        assert is_due(obligation, datetime(2024, 1, 1, 12, 0)) is False

    def test_due_exactly_at_next_occurrence(self):
        obligation = make_obligation(frequency=Frequency.DAILY)
        assert is_due(obligation, datetime(2024, 1, 2)) is True

    def test_inactive_is_not_due(self):
        obligation = make_obligation(is_active=False)
        assert is_due(obligation, datetime(2024, 6, 1)) is False

    def test_not_due_again_right_after_execution(self):
        obligation = make_obligation()
        now = datetime(2024, 1, 10)
        mark_executed(obligation, now)
        assert is_due(obligation, now) is False
        assert is_due(obligation, datetime(2024, 1, 17)) is True


class TestExecutionHelpers:
    """Tests for mark_executed() and build_transaction()."""

    def test_mark_executed_sets_last_processed(self):
        obligation = make_obligation()
        now = datetime(2024, 1, 10)
        result = mark_executed(obligation, now)
        assert result is obligation
        assert obligation.last_processed == now

    def test_build_transaction_mirrors_obligation(self):
        obligation = make_obligation(
            type=TransactionType.INCOME,
            notes="Sublet",
            client_id="client-7",
            participants=[
                Participant(user_id="alice", share=Decimal("600")),
                Participant(user_id="bob", share=Decimal("600")),
            ],
        )
        now = datetime(2024, 1, 10)
        transaction = build_transaction(obligation, now, created_by="bob")

        assert transaction.group_id == obligation.group_id
        assert transaction.description == "Rent"
        assert transaction.amount == Decimal("1200")
        assert transaction.type == TransactionType.INCOME
        assert transaction.category == "housing"
        assert transaction.date == now
        assert transaction.payer_id == "alice"
        assert transaction.notes == "Sublet"
        assert transaction.client_id == "client-7"
        assert transaction.recurring_id == obligation.id
        assert transaction.created_by == "bob"
        assert [p.user_id for p in transaction.participants] == ["alice", "bob"]

    def test_build_transaction_copies_participants(self):
        obligation = make_obligation(
            participants=[Participant(user_id="alice", share=Decimal("1200"))],
        )
        transaction = build_transaction(obligation, datetime(2024, 1, 10))
        transaction.participants[0].share = Decimal("1")
        assert obligation.participants[0].share == Decimal("1200")


class TestTimezoneAwareNow:
    """Tests for callers passing an aware "now"."""

    def test_is_due_with_aware_now(self):
        obligation = make_obligation()
        assert is_due(obligation, datetime(2024, 1, 10, tzinfo=timezone.utc)) is True
        assert is_due(obligation, datetime(2024, 1, 5, tzinfo=timezone.utc)) is False

    def test_aware_now_is_converted_to_utc(self):
        """Test 2024-01-08 01:00 at UTC+2 is still 2024-01-07 in UTC."""
        obligation = make_obligation()
        plus_two = timezone(timedelta(hours=2))
        assert is_due(obligation, datetime(2024, 1, 8, 1, 0, tzinfo=plus_two)) is False
        assert is_due(obligation, datetime(2024, 1, 8, 2, 0, tzinfo=plus_two)) is True

    def test_next_occurrence_with_aware_now(self):
        obligation = make_obligation()
        now = datetime(2024, 1, 10, tzinfo=timezone.utc)
        assert next_occurrence(obligation, now) == datetime(2024, 1, 8)
        assert next_occurrence(obligation, now, clamp=True) == datetime(2024, 1, 10)

    def test_is_ended_with_aware_now(self):
        obligation = make_obligation(end_date=datetime(2024, 2, 1))
        assert is_ended(obligation, datetime(2024, 3, 1, tzinfo=timezone.utc)) is True
        assert is_ended(obligation, datetime(2024, 1, 15, tzinfo=timezone.utc)) is False

    def test_mark_executed_stores_naive_utc(self):
        obligation = make_obligation()
        mark_executed(obligation, datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc))
        assert obligation.last_processed == datetime(2024, 1, 10, 12, 0)
        assert is_due(obligation, datetime(2024, 1, 10, 12, 0)) is False

    def test_aware_start_date_against_naive_now(self):
        obligation = make_obligation(start_date=datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert is_due(obligation, datetime(2024, 1, 10)) is True
