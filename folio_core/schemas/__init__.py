# folio_core/schemas/__init__.py
"""
Pydantic schemas: activity input validation and snapshot serialization.
"""

from folio_core.schemas.activities import ActivityCreate
from folio_core.schemas.snapshots import LotPayload, PositionPayload, SnapshotPayload

__all__ = [
    "ActivityCreate",
    "LotPayload",
    "PositionPayload",
    "SnapshotPayload",
]
