"""
Data model for the bingo swarm.

Defines the value types that flow between the registry, the pacer, the
scoring functions and the virtual participants.  Everything here is
immutable except the participant state enum itself, which is only a
label: mutable participant state lives on
:class:`~bingo_swarm.participant.VirtualParticipant`.

Key Concepts Demonstrated:
- Frozen dataclasses for values shared read-only across threads
- ``str``/``Enum`` dual inheritance so states log and compare as strings
- Validation at construction time so malformed backend payloads surface
  as :class:`~bingo_swarm.errors.ProtocolError` at the edge
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable

from .errors import ProtocolError


class ParticipantState(str, Enum):
    """
    Lifecycle states of a virtual participant.

    The happy path runs top to bottom; ``SUCCEEDED`` and ``FAILED`` are
    terminal.  No state is revisited: hub reconnects happen underneath
    the state machine without changing the current state.
    """

    IDLE = "idle"
    REGISTERING = "registering"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    AWAITING_DISTRIBUTION = "awaiting_distribution"
    CLAIMING_RESOURCE = "claiming_resource"
    RESOURCE_ASSIGNED = "resource_assigned"
    PLAYING = "playing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ParticipantState.SUCCEEDED, ParticipantState.FAILED)


@dataclass(frozen=True)
class Grid:
    """
    Immutable rectangular matrix of numbers printed on a bingo card.

    Attributes:
        rows: Tuple of rows, each a tuple of ints.  All rows share the
            same length.
    """

    rows: tuple[tuple[int, ...], ...]
    _values: frozenset[int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.rows or not self.rows[0]:
            raise ProtocolError("Grid must contain at least one cell")
        width = len(self.rows[0])
        if any(len(row) != width for row in self.rows):
            raise ProtocolError("Grid rows must all have the same length")
        object.__setattr__(
            self, "_values", frozenset(value for row in self.rows for value in row)
        )

    @classmethod
    def from_lists(cls, rows: Any) -> "Grid":
        """
        Build a grid from the nested JSON lists sent by the backend.

        Raises:
            ProtocolError: If *rows* is not a list of lists of ints.
        """
        if not isinstance(rows, list) or not all(isinstance(row, list) for row in rows):
            raise ProtocolError("Grid payload must be a list of lists")
        try:
            converted = tuple(tuple(int(value) for value in row) for row in rows)
        except (TypeError, ValueError) as exc:
            raise ProtocolError("Grid payload contains non-numeric cells") from exc
        return cls(converted)

    @property
    def height(self) -> int:
        return len(self.rows)

    @property
    def width(self) -> int:
        return len(self.rows[0])

    @property
    def is_square(self) -> bool:
        return self.height == self.width

    @property
    def columns(self) -> tuple[tuple[int, ...], ...]:
        return tuple(zip(*self.rows))

    @property
    def diagonals(self) -> tuple[tuple[int, ...], ...]:
        """Both diagonals for square grids, an empty tuple otherwise."""
        if not self.is_square:
            return ()
        size = self.height
        main = tuple(self.rows[i][i] for i in range(size))
        anti = tuple(self.rows[i][size - 1 - i] for i in range(size))
        return (main, anti)

    @property
    def values(self) -> frozenset[int]:
        return self._values

    def flatten(self) -> tuple[int, ...]:
        """All cells in row-major order."""
        return tuple(value for row in self.rows for value in row)

    def __contains__(self, value: object) -> bool:
        return value in self._values


@dataclass(frozen=True)
class Card:
    """
    A claimable bingo card as listed by the backend.

    Attributes:
        card_id: Backend identifier of the card (the registry key).
        grid: Numbers printed on the card.
    """

    card_id: int
    grid: Grid

    @classmethod
    def from_payload(cls, payload: Any) -> "Card":
        """
        Parse one ``{"id": int, "cards": [[...]]}`` entry.

        Raises:
            ProtocolError: If the entry is not shaped like a card.
        """
        if not isinstance(payload, dict):
            raise ProtocolError("Card entry is not an object")
        card_id = payload.get("id")
        if not isinstance(card_id, int) or isinstance(card_id, bool):
            raise ProtocolError("Card entry missing integer id")
        return cls(card_id=card_id, grid=Grid.from_lists(payload.get("cards")))


@dataclass(frozen=True)
class Identity:
    """
    Backend-issued identity of a participant.

    Attributes:
        user_id: Opaque identifier, unique per participant across the run.
        secret: Client code exchanged for a bearer token at login.  Empty
            when the identity was read from a pre-issued token.
    """

    user_id: Hashable
    secret: str = ""


@dataclass(frozen=True)
class ClaimResult:
    """
    Outcome of a registry claim.

    Attributes:
        success: ``True`` when every requested key is now owned by the
            claimant without displacing anybody.
        conflicts: Keys that were already owned by someone else, mapped
            to their existing owner.
        forced: ``True`` for results produced by the last-resort
            :meth:`~bingo_swarm.registry.ClaimRegistry.force_claim`.
    """

    success: bool
    conflicts: dict[Hashable, Hashable] = field(default_factory=dict)
    forced: bool = False

    def describe_conflicts(self) -> str:
        return ", ".join(
            f"{key} already owned by {owner}" for key, owner in self.conflicts.items()
        )


@dataclass(frozen=True)
class WinPredicates:
    """Which winning patterns are complete on a participant's grid."""

    line: bool = False
    column: bool = False
    diagonal: bool = False
    full_grid: bool = False

    def any(self) -> bool:
        return self.line or self.column or self.diagonal or self.full_grid

    def to_payload(self) -> dict[str, bool]:
        """Serialise to the backend's win-claim body."""
        return {
            "lineWin": self.line,
            "columnWin": self.column,
            "diagonalWin": self.diagonal,
            "fullCardWin": self.full_grid,
        }
