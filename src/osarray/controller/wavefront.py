"""
Diagonal wavefront schedule for an N x N output-stationary grid.

PEs are grouped by delay group g = row + col, ranging over [0, 2N-2].
Operands enter at the top-left corner and need row + col cycles to reach
PE (row, col), so every timing decision in DISTRIBUTE and CLEANUP is a
comparison between the phase counter and a per-PE constant derived here.

DISTRIBUTE (tick t):

    t = 0        t = 1        t = 2        t = 3        (N = 3)
    A . .        A A .        A A A        A A A
    . . .        A . .        A A .        A A A
    . . .        . . .        A . .        A A .

    PE (r, c) accumulates once t >= r + c. Row memory j starts reading at
    t = j. The phase completes when the last group is active (t = 2N-2).

CLEANUP (tick t):

    Delay groups drain in order, each owning a window of output-buffer
    capture ticks: group 0 owns tick 0, group 2N-2 owns tick 4N-5, and every
    group in between owns ticks 2g-1 and 2g. The whole drain therefore takes
    4N-4 ticks (12 for N = 4).

    group      0    1     2     3     4     5     6        (N = 4)
    window     0   1-2   3-4   5-6   7-8  9-10   11

    PE (r, c) is captured by output buffer c, into row r, at

        f(r, c) = 2(r + c) - 1    for c > 0
        f(r, 0) = 2r

    Its value needs r relay hops of one tick each to reach row 0, so it is
    emitted at e(r, c) = f(r, c) - r, never before tick r + c. Column 0 takes
    the second tick of its group's window because e(r, 0) = r - 1 would
    precede that bound.

    t <  e(r, c)                 keep accumulating (operands still arriving)
    t == e(r, c)                 EMIT the accumulator toward row 0
    e(r, c) < t <= f(N-1, c)-r   RELAY, one hop per cycle
    later                        drained, CLEAR

Everything here is plain Python over ints; the RTL evaluates the same
comparisons in hardware against its phase counter.
"""

from collections.abc import Iterator
from dataclasses import dataclass

from ..core.pe import PEMode


def delay_group(row: int, col: int) -> int:
    """Wavefront delay group of grid position (row, col)."""
    return row + col


def num_groups(dim: int) -> int:
    return 2 * dim - 1


def group_members(group: int, dim: int) -> list[tuple[int, int]]:
    """Grid positions belonging to a delay group, in row order."""
    first = max(0, group - dim + 1)
    last = min(group, dim - 1)
    return [(row, group - row) for row in range(first, last + 1)]


def positions(dim: int) -> Iterator[tuple[int, int]]:
    """All grid positions in row-major order."""
    for row in range(dim):
        for col in range(dim):
            yield row, col


# =============================================================================
# DISTRIBUTE
# =============================================================================


def distribute_last_tick(dim: int) -> int:
    """Tick at which every PE is active and DISTRIBUTE signals completion."""
    return 2 * dim - 2


def is_accepting(row: int, col: int, tick: int) -> bool:
    """True when PE (row, col) accepts streamed operands at DISTRIBUTE tick."""
    return tick >= delay_group(row, col)


def unit_started(unit: int, tick: int) -> bool:
    """True once row memory `unit` has been activated in DISTRIBUTE."""
    return tick >= unit


def active_count(dim: int, tick: int) -> int:
    """Number of accepting PEs at DISTRIBUTE tick: |{(r, c) : r + c <= tick}|."""
    return sum(1 for row, col in positions(dim) if is_accepting(row, col, tick))


def distribute_modes(dim: int, tick: int) -> list[list[PEMode]]:
    """PE mode grid for one DISTRIBUTE tick."""
    return [
        [
            PEMode.ACCUMULATE if is_accepting(row, col, tick) else PEMode.CLEAR
            for col in range(dim)
        ]
        for row in range(dim)
    ]


# =============================================================================
# CLEANUP
# =============================================================================


def drain_window(group: int, dim: int) -> tuple[int, int]:
    """First and last CLEANUP tick at which members of `group` are captured."""
    first = max(0, 2 * group - 1)
    last = first if group == num_groups(dim) - 1 else 2 * group
    return first, last


def capture_tick(row: int, col: int) -> int:
    """CLEANUP tick at which output buffer `col` captures the value of PE (row, col)."""
    tick = 2 * (row + col)
    return tick - 1 if col > 0 else tick


def emit_tick(row: int, col: int) -> int:
    """CLEANUP tick at which PE (row, col) drives its accumulator upward."""
    return capture_tick(row, col) - row


def relay_end(row: int, col: int, dim: int) -> int:
    """Last CLEANUP tick at which PE (row, col) relays a value."""
    return capture_tick(dim - 1, col) - row


def drain_mode(row: int, col: int, tick: int, dim: int) -> PEMode:
    """Mode of PE (row, col) at CLEANUP tick."""
    emit = emit_tick(row, col)
    if tick < emit:
        return PEMode.ACCUMULATE
    if tick == emit:
        return PEMode.EMIT
    if tick <= relay_end(row, col, dim):
        return PEMode.RELAY
    return PEMode.CLEAR


def cleanup_modes(dim: int, tick: int) -> list[list[PEMode]]:
    """PE mode grid for one CLEANUP tick."""
    return [[drain_mode(row, col, tick, dim) for col in range(dim)] for row in range(dim)]


def capture_row(col: int, tick: int, dim: int) -> int | None:
    """Output-buffer row captured by buffer `col` at CLEANUP tick, or None."""
    offset = tick - capture_tick(0, col)
    if offset < 0 or offset % 2:
        return None
    row = offset // 2
    return row if row < dim else None


def cleanup_last_tick(dim: int) -> int:
    """Tick of the final capture, at which CLEANUP signals completion."""
    return capture_tick(dim - 1, dim - 1)


def cleanup_ticks(dim: int) -> int:
    """Length of the CLEANUP schedule, excluding the completion tick."""
    return cleanup_last_tick(dim) + 1


# =============================================================================
# Whole-schedule view
# =============================================================================


@dataclass
class WavefrontSchedule:
    """
    Tabulated schedule for one grid size, used for tracing and checks.

    Example:
        >>> sched = WavefrontSchedule(4)
        >>> sched.cleanup_length
        12
        >>> sched.captures[11]
        [(3, 3)]
    """

    dim: int

    @property
    def distribute_length(self) -> int:
        return distribute_last_tick(self.dim) + 1

    @property
    def cleanup_length(self) -> int:
        return cleanup_ticks(self.dim)

    def distribute(self) -> list[list[list[PEMode]]]:
        return [distribute_modes(self.dim, t) for t in range(self.distribute_length)]

    def cleanup(self) -> list[list[list[PEMode]]]:
        return [cleanup_modes(self.dim, t) for t in range(self.cleanup_length)]

    @property
    def drain_windows(self) -> dict[int, tuple[int, int]]:
        """Delay group -> (first, last) CLEANUP tick of its captures."""
        return {group: drain_window(group, self.dim) for group in range(num_groups(self.dim))}

    @property
    def emit_ticks(self) -> dict[tuple[int, int], int]:
        """(row, col) -> CLEANUP tick at which the PE emits."""
        return {pos: emit_tick(*pos) for pos in positions(self.dim)}

    @property
    def captures(self) -> dict[int, list[tuple[int, int]]]:
        """CLEANUP tick -> (row, col) positions captured into output buffers."""
        table: dict[int, list[tuple[int, int]]] = {t: [] for t in range(self.cleanup_length)}
        for row, col in positions(self.dim):
            table[capture_tick(row, col)].append((row, col))
        return table
