# folio_core/schemas/snapshots.py
"""
Pydantic schemas for persisting AccountStateSnapshots.

The SQL snapshot store keeps the snapshot body as JSON. Serializing via
these models (mode="json") writes Decimals as strings, so quantities and
costs round-trip exactly.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from folio_core.schemas.validators import validate_currency, validate_currency_amounts
from folio_core.services.holdings.types import AccountStateSnapshot, Lot, Position


class LotPayload(BaseModel):
    """One open lot."""

    model_config = ConfigDict(frozen=True)

    quantity_remaining: Decimal
    cost_basis: Decimal
    acquisition_date: date
    origin_activity_id: str
    origin_sequence: int = 0


class PositionPayload(BaseModel):
    """Open lots of one asset."""

    model_config = ConfigDict(frozen=True)

    asset_id: str
    currency: str
    lots: list[LotPayload] = Field(default_factory=list)


class SnapshotPayload(BaseModel):
    """
    Serializable form of AccountStateSnapshot.

    Usage:
        payload = SnapshotPayload.from_snapshot(snapshot)
        data = payload.model_dump(mode="json")
        restored = SnapshotPayload.model_validate(data).to_snapshot()
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    snapshot_date: date
    currency: str
    positions: list[PositionPayload] = Field(default_factory=list)
    cash_balances: dict[str, Decimal] = Field(default_factory=dict)
    realized_gains: dict[str, Decimal] = Field(default_factory=dict)
    last_activity_sequence: tuple[date, int, str] | None = None
    activity_count: int = 0
    calculated_at: datetime

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return validate_currency(value)

    @field_validator("cash_balances", "realized_gains")
    @classmethod
    def normalize_currency_keys(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        return validate_currency_amounts(value)

    @classmethod
    def from_snapshot(cls, snapshot: AccountStateSnapshot) -> "SnapshotPayload":
        return cls(
            account_id=snapshot.account_id,
            snapshot_date=snapshot.snapshot_date,
            currency=snapshot.currency,
            positions=[
                PositionPayload(
                    asset_id=position.asset_id,
                    currency=position.currency,
                    lots=[
                        LotPayload(
                            quantity_remaining=lot.quantity_remaining,
                            cost_basis=lot.cost_basis,
                            acquisition_date=lot.acquisition_date,
                            origin_activity_id=lot.origin_activity_id,
                            origin_sequence=lot.origin_sequence,
                        )
                        for lot in position.lots
                    ],
                )
                for position in snapshot.positions.values()
            ],
            cash_balances=snapshot.cash_balances,
            realized_gains=snapshot.realized_gains,
            last_activity_sequence=snapshot.last_activity_sequence,
            activity_count=snapshot.activity_count,
            calculated_at=snapshot.calculated_at,
        )

    def to_snapshot(self) -> AccountStateSnapshot:
        positions = {
            p.asset_id: Position(
                account_id=self.account_id,
                asset_id=p.asset_id,
                currency=p.currency,
                lots=tuple(
                    Lot(
                        asset_id=p.asset_id,
                        account_id=self.account_id,
                        quantity_remaining=lot.quantity_remaining,
                        cost_basis=lot.cost_basis,
                        acquisition_date=lot.acquisition_date,
                        origin_activity_id=lot.origin_activity_id,
                        origin_sequence=lot.origin_sequence,
                    )
                    for lot in p.lots
                ),
            )
            for p in self.positions
        }
        return AccountStateSnapshot(
            account_id=self.account_id,
            snapshot_date=self.snapshot_date,
            currency=self.currency,
            positions=positions,
            cash_balances=dict(self.cash_balances),
            realized_gains=dict(self.realized_gains),
            last_activity_sequence=self.last_activity_sequence,
            activity_count=self.activity_count,
            calculated_at=self.calculated_at,
        )
