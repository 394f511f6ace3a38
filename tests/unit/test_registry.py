"""
Unit tests for the claim registry.

The registry is the only thing standing between thousands of threads
and duplicate card ownership, so besides the single-threaded semantics
these tests hammer it with overlapping batches from many threads.
"""

from __future__ import annotations

import threading

import pytest

from bingo_swarm.registry import ClaimRegistry


pytestmark = pytest.mark.unit


def test_try_claim_inserts_whole_batch(card_registry):
    # Act
    result = card_registry.try_claim([1, 2, 3], claimant=0)

    # Assert
    assert result.success
    assert result.conflicts == {}
    assert card_registry.snapshot() == {1: 0, 2: 0, 3: 0}


def test_conflicting_batch_inserts_nothing(card_registry):
    # Arrange
    card_registry.try_claim([2], claimant=0)

    # Act
    result = card_registry.try_claim([1, 2, 3], claimant=1)

    # Assert
    assert not result.success
    assert result.conflicts == {2: 0}
    assert 1 not in card_registry
    assert 3 not in card_registry
    assert len(card_registry) == 1


def test_reclaiming_own_keys_is_not_a_conflict(card_registry):
    card_registry.try_claim([1, 2], claimant=5)

    result = card_registry.try_claim([2, 1, 2], claimant=5)

    assert result.success
    assert card_registry.claimed_by(5) == {1, 2}


def test_force_claim_keeps_existing_owner(card_registry):
    # Arrange
    card_registry.try_claim([1], claimant=0)

    # Act
    result = card_registry.force_claim([1, 2], claimant=1)

    # Assert
    assert result.forced
    assert not result.success
    assert result.conflicts == {1: 0}
    assert card_registry.owner_of(1) == 0
    assert card_registry.owner_of(2) == 1


def test_force_claim_without_contest_succeeds(card_registry):
    result = card_registry.force_claim([8], claimant=3)

    assert result.success
    assert result.forced
    assert card_registry.owner_of(8) == 3


def test_snapshot_is_a_copy(card_registry):
    card_registry.claim_one("a", 1)

    snapshot = card_registry.snapshot()
    snapshot["b"] = 2

    assert "b" not in card_registry
    assert card_registry.owner_of("missing") is None


def test_concurrent_overlapping_batches_have_one_winner():
    """Every thread claims the shared key 0 plus one key of its own."""
    # Arrange
    registry = ClaimRegistry("cards")
    threads_count = 32
    barrier = threading.Barrier(threads_count)
    results = {}

    def claim(index: int) -> None:
        barrier.wait()
        results[index] = registry.try_claim([0, index + 1], claimant=index)

    threads = [threading.Thread(target=claim, args=(i,)) for i in range(threads_count)]

    # Act
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    # Assert
    winners = [index for index, result in results.items() if result.success]
    assert len(winners) == 1
    assert registry.snapshot() == {0: winners[0], winners[0] + 1: winners[0]}


def test_concurrent_disjoint_claims_all_succeed():
    registry = ClaimRegistry("identities")
    barrier = threading.Barrier(16)

    def claim(index: int) -> None:
        barrier.wait()
        for offset in range(50):
            registry.claim_one(index * 1000 + offset, index)

    threads = [threading.Thread(target=claim, args=(i,)) for i in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(registry) == 16 * 50
    assert all(len(registry.claimed_by(index)) == 50 for index in range(16))
