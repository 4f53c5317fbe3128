"""
GPU memory attribution
======================

Turns the per-device process memory lists reported by the telemetry source
into per-user aggregates:

- one ``UserAggregate`` per (device, uid) with nonzero usage
- a per-display-name count of distinct GPU cards in use

Account names come from a ``UserDirectory``. A uid missing from both of its
partitions makes the directory re-enumerate accounts, at most once per cycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .users import UserDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessUsage:
    """GPU memory held by one uid on one device (already summed per uid)"""

    owning_uid: int
    used_memory_bytes: int


@dataclass(frozen=True)
class UserAggregate:
    device_index: int
    uid: int
    display_name: str
    used_memory_bytes: int


@dataclass(frozen=True)
class AttributionResult:
    aggregates: Tuple[UserAggregate, ...] = ()
    user_cards: Mapping[str, int] = field(default_factory=dict)
    refreshed: bool = False


class Attributor:
    """
    Resolve process owners to account names for one collection cycle at a time.

    Args:
        directory: account cache used for uid -> name lookups
        show_unknown_users: also report system accounts and unresolvable uids
            (the latter under their numeric uid)
    """

    def __init__(self, directory: UserDirectory, show_unknown_users: bool = False):
        self.directory = directory
        self.show_unknown_users = show_unknown_users

    def _resolve(self, uid: int) -> Optional[str]:
        identity = self.directory.lookup(uid)
        if identity is not None and (identity.is_known or self.show_unknown_users):
            return identity.display_name
        if identity is None and self.show_unknown_users:
            return str(uid)
        return None

    def attribute(self, usage: Mapping[int, Sequence[ProcessUsage]]) -> AttributionResult:
        """
        Attribute one cycle worth of process usage.

        Args:
            usage: device index -> per-uid usage on that device

        Returns:
            AttributionResult with aggregates in device order
        """
        # Zero-byte entries never reach the directory
        nonzero: List[Tuple[int, ProcessUsage]] = [
            (index, entry)
            for index in sorted(usage)
            for entry in usage[index]
            if entry.used_memory_bytes > 0
        ]

        refreshed = False
        unresolved = {entry.owning_uid for _, entry in nonzero if entry.owning_uid not in self.directory}
        if unresolved:
            logger.debug(f"Unknown uid(s) {sorted(unresolved)} seen, refreshing user directory")
            self.directory.refresh()
            refreshed = True

        aggregates: List[UserAggregate] = []
        cards: Dict[str, set] = {}
        for index, entry in nonzero:
            name = self._resolve(entry.owning_uid)
            if name is None:
                logger.debug(f"Dropping usage of uid {entry.owning_uid} on GPU {index}")
                continue
            aggregates.append(UserAggregate(
                device_index=index,
                uid=entry.owning_uid,
                display_name=name,
                used_memory_bytes=entry.used_memory_bytes,
            ))
            cards.setdefault(name, set()).add(index)

        return AttributionResult(
            aggregates=tuple(aggregates),
            user_cards={name: len(devices) for name, devices in sorted(cards.items())},
            refreshed=refreshed,
        )


def sum_by_uid(entries: Iterable[Tuple[int, Optional[int]]]) -> List[ProcessUsage]:
    """
    Collapse (uid, bytes) pairs for one device into one ProcessUsage per uid.

    ``None`` byte counts (NVML could not report them) count as zero.
    """
    totals: Dict[int, int] = {}
    for uid, used in entries:
        totals[uid] = totals.get(uid, 0) + int(used or 0)
    return [ProcessUsage(owning_uid=uid, used_memory_bytes=total) for uid, total in totals.items()]


__all__ = ["ProcessUsage", "UserAggregate", "AttributionResult", "Attributor", "sum_by_uid"]
