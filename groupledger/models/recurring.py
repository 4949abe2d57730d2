"""
Recurring Obligation Model

A recurring obligation is a template (monthly rent, a yearly subscription)
from which a transaction is generated each period.

DESIGN DECISION: The model stores only what was agreed (amount, frequency,
start/end) and the last time it ran. Whether it is due is computed by
groupledger.scheduling from these fields and an explicit "now"; nothing on
the model reads the clock.

Obligations are retired by clearing is_active or by passing end_date. The
scheduler never deletes them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from groupledger.models.timestamps import to_naive_utc
from groupledger.models.transaction import Participant, TransactionType


class Frequency(str, Enum):
    """How often an obligation recurs."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class RecurringObligation(BaseModel):
    """
    A periodically generated transaction template.

    NOTE: Share balance is deliberately not validated here. Storage accepts
    whatever it is given; services call groupledger.validation before writing.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique obligation ID"
    )
    group_id: UUID = Field(
        ...,
        description="Group that owns this obligation"
    )
    title: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Amount of each generated transaction"
    )
    type: TransactionType = Field(default=TransactionType.EXPENSE)
    category: str = Field(..., min_length=1)
    frequency: Frequency

    start_date: datetime = Field(
        ...,
        description="First anchor of the schedule"
    )
    end_date: Optional[datetime] = Field(
        default=None,
        description="After this moment the obligation no longer recurs"
    )
    last_processed: Optional[datetime] = Field(
        default=None,
        description="When the obligation last generated a transaction"
    )

    payer_id: str = Field(..., min_length=1)
    participants: list[Participant] = Field(default_factory=list)
    notes: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    client_id: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('start_date', 'end_date', 'last_processed', 'created_at', 'updated_at')
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @model_validator(mode='after')
    def validate_dates(self) -> 'RecurringObligation':
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self
