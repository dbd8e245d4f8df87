"""In-memory index of rooms built from sync responses."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import replace
from types import MappingProxyType

from conduit_client.models import Membership, Room, RoomDelta


_MERGED_FIELDS = ("room_name", "topic", "canonical_alias")


def _merge(current: Room | None, delta: RoomDelta) -> Room:
    """Apply one delta on top of the current record, field by field."""
    if current is None:
        # A room we have never seen is an implicit join unless the delta says otherwise.
        current = Room(room_id=delta.room_id, membership=delta.membership or Membership.join)

    changes = {}
    if delta.membership is not None:
        changes["membership"] = delta.membership
    for name in _MERGED_FIELDS:
        value = getattr(delta, name)
        if value is not None:
            changes[name] = value or None
    return replace(current, **changes) if changes else current


class RoomIndex:
    """Mapping from room id to the latest known ``Room`` record.

    ``apply_delta`` builds a new mapping and swaps it in, so readers always
    see either the state before a delta or the state after it.
    """

    def __init__(self) -> None:
        self._rooms: Mapping[str, Room] = MappingProxyType({})
        self._write_lock = threading.Lock()

    def apply_delta(self, deltas: Iterable[RoomDelta]) -> None:
        """Merge a batch of room deltas into the index."""
        with self._write_lock:
            updated = dict(self._rooms)
            for delta in deltas:
                updated[delta.room_id] = _merge(updated.get(delta.room_id), delta)
            self._rooms = MappingProxyType(updated)

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def list(self, membership: Membership | None = None) -> list[Room]:
        """Rooms sorted by room id, optionally restricted to one membership."""
        snapshot = self._rooms
        return [
            snapshot[room_id]
            for room_id in sorted(snapshot)
            if membership is None or snapshot[room_id].membership is membership
        ]

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
