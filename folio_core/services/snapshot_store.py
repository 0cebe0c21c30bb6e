# folio_core/services/snapshot_store.py
"""
Snapshot stores: caches of AccountStateSnapshots keyed by (account, date).

A snapshot is a pure function of the activities up to its date, so the
store is a cache, not a source of truth: deleting entries only costs
recomputation. put_snapshot replaces any existing entry for the same key.

Implementations:
    InMemorySnapshotStore  dict + lock, for tests and single-process use
    SqlSnapshotStore       SQLAlchemy table `account_snapshots`, JSON body
"""

import bisect
import logging
import threading
from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from folio_core.database import make_session_factory, session_scope
from folio_core.models import AccountSnapshotRecord
from folio_core.schemas.snapshots import SnapshotPayload
from folio_core.services.holdings.types import AccountStateSnapshot

logger = logging.getLogger(__name__)


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemorySnapshotStore:
    """
    Thread-safe in-process snapshot store.

    Keeps a sorted date index per account so on-or-before lookups are
    O(log n).
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, dict[date, AccountStateSnapshot]] = {}
        self._dates: dict[str, list[date]] = {}
        self._lock = threading.Lock()

    def get_snapshot(self, account_id: str, on: date) -> AccountStateSnapshot | None:
        with self._lock:
            return self._snapshots.get(account_id, {}).get(on)

    def put_snapshot(self, snapshot: AccountStateSnapshot) -> None:
        with self._lock:
            by_date = self._snapshots.setdefault(snapshot.account_id, {})
            dates = self._dates.setdefault(snapshot.account_id, [])
            if snapshot.snapshot_date not in by_date:
                bisect.insort(dates, snapshot.snapshot_date)
            by_date[snapshot.snapshot_date] = snapshot

    def latest_snapshot_on_or_before(
            self,
            account_id: str,
            on: date,
    ) -> AccountStateSnapshot | None:
        with self._lock:
            dates = self._dates.get(account_id, [])
            index = bisect.bisect_right(dates, on)
            if index == 0:
                return None
            return self._snapshots[account_id][dates[index - 1]]

    def delete_from(self, account_id: str, from_date: date) -> int:
        with self._lock:
            dates = self._dates.get(account_id, [])
            index = bisect.bisect_left(dates, from_date)
            removed = dates[index:]
            for d in removed:
                del self._snapshots[account_id][d]
            del dates[index:]
        if removed:
            logger.debug(f"Dropped {len(removed)} snapshots for {account_id} from {from_date}")
        return len(removed)


# =============================================================================
# SQL STORE
# =============================================================================

class SqlSnapshotStore:
    """
    Snapshot store backed by the `account_snapshots` table.

    Each call runs in its own short transaction, so the store can be shared
    across the recalculation worker threads.
    """

    def __init__(self, engine: Engine) -> None:
        self._session_factory = make_session_factory(engine)

    def get_snapshot(self, account_id: str, on: date) -> AccountStateSnapshot | None:
        with session_scope(self._session_factory) as session:
            record = session.scalars(
                select(AccountSnapshotRecord).where(
                    AccountSnapshotRecord.account_id == account_id,
                    AccountSnapshotRecord.snapshot_date == on,
                )
            ).first()
            return self._to_snapshot(record)

    def put_snapshot(self, snapshot: AccountStateSnapshot) -> None:
        payload = SnapshotPayload.from_snapshot(snapshot)
        with session_scope(self._session_factory) as session:
            session.execute(
                delete(AccountSnapshotRecord).where(
                    AccountSnapshotRecord.account_id == snapshot.account_id,
                    AccountSnapshotRecord.snapshot_date == snapshot.snapshot_date,
                )
            )
            session.add(
                AccountSnapshotRecord(
                    account_id=snapshot.account_id,
                    snapshot_date=snapshot.snapshot_date,
                    currency=snapshot.currency,
                    activity_count=snapshot.activity_count,
                    payload=payload.model_dump(mode="json"),
                    calculated_at=snapshot.calculated_at,
                )
            )

    def latest_snapshot_on_or_before(
            self,
            account_id: str,
            on: date,
    ) -> AccountStateSnapshot | None:
        with session_scope(self._session_factory) as session:
            record = session.scalars(
                select(AccountSnapshotRecord)
                .where(
                    AccountSnapshotRecord.account_id == account_id,
                    AccountSnapshotRecord.snapshot_date <= on,
                )
                .order_by(AccountSnapshotRecord.snapshot_date.desc())
                .limit(1)
            ).first()
            return self._to_snapshot(record)

    def delete_from(self, account_id: str, from_date: date) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(AccountSnapshotRecord).where(
                    AccountSnapshotRecord.account_id == account_id,
                    AccountSnapshotRecord.snapshot_date >= from_date,
                )
            )
            removed = result.rowcount or 0
        if removed:
            logger.debug(f"Dropped {removed} snapshots for {account_id} from {from_date}")
        return removed

    @staticmethod
    def _to_snapshot(record: AccountSnapshotRecord | None) -> AccountStateSnapshot | None:
        if record is None:
            return None
        return SnapshotPayload.model_validate(record.payload).to_snapshot()
