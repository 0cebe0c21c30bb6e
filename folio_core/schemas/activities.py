# folio_core/schemas/activities.py
"""
Pydantic schemas for Activity validation.

The ledger boundary validates incoming activities once; the Holdings
Calculator trusts what it is given and does not re-validate.

Validation layers:
- Field constraints: type, length, pattern, sign of fees and prices
- Model validator: per-type rules (asset required, positive quantity,
  positive split ratio, is_external only on transfers)

IMPORTANT: All financial values use Decimal for precision.
Never use float for money!
"""

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from folio_core.models import ASSET_REQUIRED_TYPES, Activity, ActivityType
from folio_core.schemas.validators import validate_currency, validate_ledger_date

_TRANSFER_TYPES = frozenset({ActivityType.TRANSFER_IN, ActivityType.TRANSFER_OUT})
_CASH_ONLY_TYPES = frozenset({
    ActivityType.DEPOSIT,
    ActivityType.WITHDRAWAL,
    ActivityType.INTEREST,
    ActivityType.CREDIT,
})


class ActivityCreate(BaseModel):
    """
    Incoming ledger entry.

    Use to_activity() to obtain the immutable Activity the calculators consume.
    """

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1, max_length=64)
    account_id: str = Field(..., min_length=1, max_length=64)
    activity_type: ActivityType
    date: dt.date = Field(..., description="Trade or settlement date")
    currency: str = Field(..., description="ISO 4217 currency of price, amount and fee")

    asset_id: str | None = Field(default=None, max_length=64)
    quantity: Decimal = Field(default=Decimal("0"), description="Units traded or transferred")
    unit_price: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Price per unit; carried cost for asset transfers",
    )
    fee: Decimal = Field(default=Decimal("0"), ge=0, description="Fees (0 or positive)")
    amount: Decimal | None = Field(
        default=None,
        description="Cash amount for cash events; split ratio for SPLIT",
    )
    sequence: int = Field(default=0, ge=0, description="Ledger insertion order")
    is_external: bool = Field(
        default=False,
        description="Transfer counterparty is outside the tracked accounts",
    )

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return validate_currency(value)

    @field_validator("date")
    @classmethod
    def check_date(cls, value: dt.date) -> dt.date:
        return validate_ledger_date(value)

    @model_validator(mode="after")
    def validate_type_rules(self) -> "ActivityCreate":
        activity_type = self.activity_type

        if activity_type in ASSET_REQUIRED_TYPES and not self.asset_id:
            raise ValueError(f"{activity_type.value} requires an asset_id")

        if activity_type in _CASH_ONLY_TYPES and self.asset_id:
            raise ValueError(f"{activity_type.value} must not reference an asset")

        moves_units = activity_type in (ActivityType.BUY, ActivityType.SELL) or (
            activity_type in _TRANSFER_TYPES and self.asset_id
        )
        if moves_units and self.quantity <= 0:
            raise ValueError(f"{activity_type.value} requires a positive quantity")

        if activity_type is ActivityType.SPLIT:
            ratio = self.amount if self.amount else self.quantity
            if ratio <= 0:
                raise ValueError("SPLIT requires a positive ratio in amount or quantity")

        if self.is_external and activity_type not in _TRANSFER_TYPES:
            raise ValueError("is_external only applies to TRANSFER_IN / TRANSFER_OUT")

        if activity_type in (ActivityType.DEPOSIT, ActivityType.WITHDRAWAL):
            cash = self.amount if self.amount is not None else self.quantity * self.unit_price
            if cash <= 0:
                raise ValueError(f"{activity_type.value} requires a positive amount")

        return self

    def to_activity(self) -> Activity:
        return Activity(
            id=self.id,
            account_id=self.account_id,
            activity_type=self.activity_type,
            date=self.date,
            currency=self.currency,
            asset_id=self.asset_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            fee=self.fee,
            amount=self.amount,
            sequence=self.sequence,
            is_external=self.is_external,
        )
