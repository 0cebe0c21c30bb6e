# folio_core/models.py
import enum
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Integer, JSON, UniqueConstraint, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class ActivityType(str, enum.Enum):
    # Trades
    BUY = "BUY"
    SELL = "SELL"

    # Cash movements across the account boundary
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"

    # Income
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    CREDIT = "CREDIT"  # Broker rebates, bonuses

    # Charges
    FEE = "FEE"
    TAX = "TAX"

    # Corporate actions / bookkeeping
    SPLIT = "SPLIT"
    ADJUSTMENT = "ADJUSTMENT"  # No cash or lot effect


# Types that always reference an asset
ASSET_REQUIRED_TYPES = frozenset({
    ActivityType.BUY,
    ActivityType.SELL,
    ActivityType.SPLIT,
    ActivityType.DIVIDEND,
})


@dataclass(frozen=True)
class Activity:
    """
    One immutable ledger entry.

    Activities are never edited in place; a correction is a new activity
    (and an invalidation of snapshots from its date onwards).

    Attributes:
        id: Ledger identifier, unique across accounts
        account_id: Owning account
        activity_type: What happened
        date: Trade/settlement date used for ordering and valuation
        currency: Currency of price, amount and fee
        asset_id: Instrument for asset events, None for pure cash events
        quantity: Units (BUY/SELL/TRANSFER of assets)
        unit_price: Price per unit; carried cost for asset transfers
        fee: Charges in `currency`, always >= 0
        amount: Cash amount for cash events; split ratio for SPLIT
        sequence: Insertion order, breaks ties on the same date
        is_external: TRANSFER_* only - counterparty outside tracked accounts

    Note:
        Replay order is (date, sequence, id), never insertion time.
    """
    id: str
    account_id: str
    activity_type: ActivityType
    date: date
    currency: str
    asset_id: str | None = None
    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    fee: Decimal = Decimal("0")
    amount: Decimal | None = None
    sequence: int = 0
    is_external: bool = False

    @property
    def sort_key(self) -> tuple[date, int, str]:
        return (self.date, self.sequence, self.id)

    @property
    def is_asset_event(self) -> bool:
        """True if the activity moves units of an instrument."""
        return self.asset_id is not None

    @property
    def cash_amount(self) -> Decimal:
        """
        Cash value of a cash event.

        Falls back to quantity x unit_price when the ledger left amount empty
        (some brokers export dividends that way).
        """
        if self.amount is not None:
            return self.amount
        return self.quantity * self.unit_price

    @property
    def split_ratio(self) -> Decimal:
        """New units per old unit for SPLIT (2 = 2-for-1)."""
        if self.amount is not None and self.amount != Decimal("0"):
            return self.amount
        return self.quantity

    @property
    def trade_value(self) -> Decimal:
        """quantity x unit_price, before fees."""
        return self.quantity * self.unit_price


class AccountSnapshotRecord(Base):
    """
    Persisted AccountStateSnapshot.

    One row per (account_id, snapshot_date). The snapshot body (lots, cash,
    realized gains) is stored as JSON produced by schemas.snapshots so that
    decimals round-trip as strings. A newer computation replaces the row
    instead of updating it field by field.
    """
    __tablename__ = "account_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(64), index=True)
    snapshot_date: Mapped[date] = mapped_column(Date)
    currency: Mapped[str] = mapped_column(String(3))
    activity_count: Mapped[int] = mapped_column(Integer, default=0)
    payload: Mapped[dict] = mapped_column(JSON)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("account_id", "snapshot_date", name="uq_account_snapshot_date"),
        Index("ix_account_snapshots_account_date", "account_id", "snapshot_date"),
    )
