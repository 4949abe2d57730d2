"""
Transaction Models

A transaction is a single income or expense inside a group, optionally split
between participants. Transactions created by running a recurring obligation
keep a weak reference (recurring_id) back to it for audit purposes.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from groupledger.models.timestamps import to_naive_utc


class TransactionType(str, Enum):
    """Direction of money flow."""
    INCOME = "income"
    EXPENSE = "expense"


class TransactionStatus(str, Enum):
    """Settlement state of a transaction."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Participant(BaseModel):
    """
    A participant's portion of a split amount.

    Shares are absolute amounts, not percentages. Whether they add up to
    the total is checked by groupledger.validation, not here.
    """

    user_id: str = Field(
        ...,
        min_length=1,
        description="Participant's user identifier"
    )
    share: Decimal = Field(
        ...,
        ge=0,
        description="Participant's portion of the amount"
    )


class Transaction(BaseModel):
    """A recorded income or expense in a group."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    group_id: UUID = Field(
        ...,
        description="Group the transaction belongs to"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Transaction amount in the group's currency"
    )
    type: TransactionType = Field(default=TransactionType.EXPENSE)
    category: str = Field(..., min_length=1)
    date: datetime = Field(default_factory=datetime.utcnow)
    payer_id: str = Field(
        ...,
        min_length=1,
        description="User who paid or received the money"
    )
    participants: list[Participant] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=500)
    status: TransactionStatus = Field(default=TransactionStatus.COMPLETED)
    tags: list[str] = Field(default_factory=list)

    client_id: Optional[str] = None
    recurring_id: Optional[UUID] = Field(
        default=None,
        description="Recurring obligation that generated this transaction"
    )
    created_by: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('date', 'created_at', 'updated_at')
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @property
    def total_shares(self) -> Decimal:
        return sum((p.share for p in self.participants), Decimal("0"))
