"""
Win and score evaluation for a participant's bingo card.

Both functions are pure: they read a :class:`~bingo_swarm.models.Grid`
and a set of marks and return a value, with no side effects.  They are a
client-side mirror of the backend's rules, good enough to decide which
score to attach to a submission and when to claim a win; the backend
remains the authority.

Scoring rewards progress along lines rather than counting marks.  For
every scored line, the values already marked are listed in the line's
natural order and the n-th of them earns ``10 * n`` points.  With the
grid ``[[1, 2], [3, 4]]``, confirmed marks ``{1}`` and a new mark ``4``,
scoring rows only gives ``10`` for ``[1]`` plus ``10`` for ``[4]``: 20.

Key Concepts Demonstrated:
- ``enum.Flag`` for combinable options
- Pure functions over immutable inputs, safe to call from any thread
"""

from __future__ import annotations

from collections.abc import Iterable, Set
from enum import Flag, auto

from .models import Grid, WinPredicates

POINTS_PER_POSITION = 10


class ScoringLines(Flag):
    """Which lines of the grid contribute to the score."""

    ROWS = auto()
    COLUMNS = auto()
    DIAGONALS = auto()
    FULL_GRID = auto()


DEFAULT_SCORING_LINES = ScoringLines.ROWS | ScoringLines.COLUMNS | ScoringLines.DIAGONALS


def scored_lines(
    grid: Grid, lines: ScoringLines = DEFAULT_SCORING_LINES
) -> list[tuple[int, ...]]:
    """
    Collect the lines that take part in scoring.

    Diagonals are only produced for square grids.  ``FULL_GRID`` adds the
    whole grid as one row-major line.
    """
    collected: list[tuple[int, ...]] = []
    if ScoringLines.ROWS in lines:
        collected.extend(grid.rows)
    if ScoringLines.COLUMNS in lines:
        collected.extend(grid.columns)
    if ScoringLines.DIAGONALS in lines:
        collected.extend(grid.diagonals)
    if ScoringLines.FULL_GRID in lines:
        collected.append(grid.flatten())
    return collected


def line_score(line: Iterable[int], marks: Set[int]) -> int:
    """Score one line: the n-th marked value in line order earns ``10 * n``."""
    present = [value for value in line if value in marks]
    return sum(POINTS_PER_POSITION * position for position in range(1, len(present) + 1))


def score(
    grid: Grid,
    confirmed: Set[int],
    new_mark: int,
    lines: ScoringLines = DEFAULT_SCORING_LINES,
) -> int:
    """
    Score the hypothetical mark set ``confirmed | {new_mark}``.

    Args:
        grid: The participant's playing grid.
        confirmed: Marks the backend has already accepted.
        new_mark: The value about to be submitted.
        lines: Which lines contribute (see :class:`ScoringLines`).

    Returns:
        The sum of :func:`line_score` over every scored line.
    """
    marks = frozenset(confirmed) | {new_mark}
    return sum(line_score(line, marks) for line in scored_lines(grid, lines))


def _line_complete(line: Iterable[int], marks: Set[int]) -> bool:
    return all(value in marks for value in line)


def evaluate_win(grid: Grid, confirmed: Set[int]) -> WinPredicates:
    """
    Check which winning patterns are complete using confirmed marks only.

    Returns:
        :class:`WinPredicates` where ``line`` means any complete row,
        ``column`` any complete column, ``diagonal`` either diagonal of a
        square grid, and ``full_grid`` every cell.
    """
    return WinPredicates(
        line=any(_line_complete(row, confirmed) for row in grid.rows),
        column=any(_line_complete(column, confirmed) for column in grid.columns),
        diagonal=any(_line_complete(diagonal, confirmed) for diagonal in grid.diagonals),
        full_grid=grid.values <= frozenset(confirmed),
    )
