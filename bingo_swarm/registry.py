"""
Process-wide claim registries.

A :class:`ClaimRegistry` maps keys to the participant that owns them and
guarantees at most one owner per key while thousands of participant
threads claim concurrently.  The swarm runs two instances:

- the **resource registry** (card id -> participant index), which checks
  that the backend never hands the same card to two players;
- the **identity registry** (backend user id -> participant index), which
  checks that registration never issues the same identity twice.

Claims are batch operations: the whole candidate set is checked and
inserted under one lock acquisition.  Checking ids one at a time would
let two participants with overlapping batches each win a disjoint subset
and end up sharing ownership of one listing.

Key Concepts Demonstrated:
- Encapsulated shared state: the backing dict never leaves the class
- Minimal critical sections (one per batch, no I/O under the lock)
- Conflicts reported as values rather than raised as exceptions
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Hashable

from .models import ClaimResult


class ClaimRegistry:
    """
    Thread-safe key -> owner map with batch claim semantics.

    Entries are only ever added.  Once a key has an owner that owner never
    changes for the lifetime of the registry, including on the forced
    path.

    Args:
        name: Label used in log lines and ``repr``.
    """

    def __init__(self, name: str = "registry"):
        self.name = name
        self._owners: dict[Hashable, Hashable] = {}
        self._lock = threading.Lock()

    def try_claim(self, keys: Iterable[Hashable], claimant: Hashable) -> ClaimResult:
        """
        Claim every key in *keys* for *claimant*, or none of them.

        Keys the claimant already owns are not conflicts, so repeating a
        successful claim is harmless.

        Args:
            keys: Candidate keys, typically the card ids from one listing.
            claimant: Participant identifier recorded as the owner.

        Returns:
            A successful :class:`ClaimResult` when no key belongs to
            anybody else, otherwise an unsuccessful result listing the
            conflicting keys and their owners.  Nothing is inserted on
            conflict.
        """
        candidates = list(dict.fromkeys(keys))
        with self._lock:
            conflicts = {
                key: self._owners[key]
                for key in candidates
                if key in self._owners and self._owners[key] != claimant
            }
            if conflicts:
                return ClaimResult(success=False, conflicts=conflicts)
            for key in candidates:
                self._owners[key] = claimant
        return ClaimResult(success=True)

    def force_claim(self, keys: Iterable[Hashable], claimant: Hashable) -> ClaimResult:
        """
        Record *claimant* as owner of every still-free key in *keys*.

        Used after a bounded number of conflicting :meth:`try_claim`
        attempts so a participant can keep playing instead of starving.
        Keys that already have an owner keep it; they are returned as
        conflicts so the caller can log the shared ownership.

        Returns:
            A :class:`ClaimResult` with ``forced=True``.  ``success`` is
            ``True`` only when no key was contested.
        """
        candidates = list(dict.fromkeys(keys))
        with self._lock:
            conflicts = {
                key: self._owners[key]
                for key in candidates
                if key in self._owners and self._owners[key] != claimant
            }
            for key in candidates:
                self._owners.setdefault(key, claimant)
        return ClaimResult(success=not conflicts, conflicts=conflicts, forced=True)

    def claim_one(self, key: Hashable, claimant: Hashable) -> ClaimResult:
        return self.try_claim((key,), claimant)

    def owner_of(self, key: Hashable) -> Hashable | None:
        with self._lock:
            return self._owners.get(key)

    def claimed_by(self, claimant: Hashable) -> set[Hashable]:
        """Return every key currently owned by *claimant*."""
        with self._lock:
            return {key for key, owner in self._owners.items() if owner == claimant}

    def snapshot(self) -> dict[Hashable, Hashable]:
        """Return a copy of the key -> owner map."""
        with self._lock:
            return dict(self._owners)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._owners

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)

    def __repr__(self) -> str:
        return f"ClaimRegistry(name={self.name!r}, entries={len(self)})"
