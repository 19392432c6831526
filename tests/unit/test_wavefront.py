"""
Unit tests for the diagonal wavefront schedule.

These tests verify:
1. Delay groups partition the grid
2. DISTRIBUTE activation is monotone and follows r + c
3. CLEANUP emits each group once, relays each value one hop per tick,
   and delivers PE (r, c) to output buffer c inside its group's window
4. The N = 4 schedule in full: twelve ticks, groups 0..6 in order
"""

import pytest

from osarray.controller import wavefront
from osarray.controller.wavefront import WavefrontSchedule
from osarray.core.pe import PEMode

GRID_SIZES = [1, 2, 3, 4, 5, 8]


class TestDelayGroups:
    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_groups_partition_grid(self, dim):
        seen = []
        for group in range(wavefront.num_groups(dim)):
            members = wavefront.group_members(group, dim)
            assert members, f"group {group} is empty"
            assert all(wavefront.delay_group(r, c) == group for r, c in members)
            seen.extend(members)
        assert sorted(seen) == sorted(wavefront.positions(dim))

    def test_group_members_n4(self):
        assert wavefront.group_members(0, 4) == [(0, 0)]
        assert wavefront.group_members(3, 4) == [(0, 3), (1, 2), (2, 1), (3, 0)]
        assert wavefront.group_members(6, 4) == [(3, 3)]


class TestDistribute:
    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_activation_never_early(self, dim):
        """No PE accepts operands before tick row + col."""
        for tick in range(wavefront.distribute_last_tick(dim) + 1):
            modes = wavefront.distribute_modes(dim, tick)
            for r, c in wavefront.positions(dim):
                if modes[r][c] == PEMode.ACCUMULATE:
                    assert tick >= r + c

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_activation_monotone(self, dim):
        """Once active, a PE stays active for the rest of DISTRIBUTE."""
        previous = set()
        for tick in range(wavefront.distribute_last_tick(dim) + 1):
            modes = wavefront.distribute_modes(dim, tick)
            active = {
                (r, c)
                for r, c in wavefront.positions(dim)
                if modes[r][c] == PEMode.ACCUMULATE
            }
            assert previous <= active
            previous = active
        assert len(previous) == dim * dim

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_active_count(self, dim):
        for tick in range(2 * dim + 2):
            expected = len([(r, c) for r in range(dim) for c in range(dim) if r + c <= tick])
            assert wavefront.active_count(dim, tick) == expected

    def test_active_count_n4(self):
        counts = [wavefront.active_count(4, t) for t in range(7)]
        assert counts == [1, 3, 6, 10, 13, 15, 16]

    def test_units_start_one_per_tick(self):
        for tick in range(4):
            started = [wavefront.unit_started(j, tick) for j in range(4)]
            assert started == [j <= tick for j in range(4)]

    def test_all_active_at_last_tick(self):
        for dim in GRID_SIZES:
            assert wavefront.active_count(dim, wavefront.distribute_last_tick(dim)) == dim * dim
            if dim > 1:
                last = wavefront.distribute_last_tick(dim) - 1
                assert wavefront.active_count(dim, last) == dim * dim - 1


class TestCleanup:
    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_each_pe_emits_once(self, dim):
        sched = WavefrontSchedule(dim)
        for r, c in wavefront.positions(dim):
            emits = [
                t for t, modes in enumerate(sched.cleanup()) if modes[r][c] == PEMode.EMIT
            ]
            assert emits == [wavefront.emit_tick(r, c)]

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_no_emit_before_group_tick(self, dim):
        """A PE keeps accumulating at least until tick row + col."""
        for r, c in wavefront.positions(dim):
            assert wavefront.emit_tick(r, c) >= wavefront.delay_group(r, c)

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_no_accumulate_after_emit(self, dim):
        """Accumulation stops for good once a PE has emitted."""
        for r, c in wavefront.positions(dim):
            modes = [wavefront.drain_mode(r, c, t, dim) for t in range(4 * dim + 2)]
            emit = modes.index(PEMode.EMIT)
            assert all(m == PEMode.ACCUMULATE for m in modes[:emit])
            assert PEMode.ACCUMULATE not in modes[emit:]

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_drain_latency(self, dim):
        """
        Trace every accumulator hop by hop through the relay chain.

        A value emitted by PE (r, c) must sit in PE (r-k, c)'s forward
        register k ticks later and reach buffer c after exactly r hops.
        """
        for r, c in wavefront.positions(dim):
            emit = wavefront.emit_tick(r, c)
            for hop in range(1, r + 1):
                holder = r - hop
                # Latched on the tick before it is driven, driven on this tick
                assert wavefront.drain_mode(holder, c, emit + hop - 1, dim) == PEMode.RELAY
                assert wavefront.drain_mode(holder, c, emit + hop, dim) == PEMode.RELAY
            assert wavefront.capture_tick(r, c) == emit + r
            assert wavefront.capture_row(c, emit + r, dim) == r

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_capture_schedule_is_collision_free(self, dim):
        """Each buffer captures at most one row per tick, every row exactly once."""
        for c in range(dim):
            rows = [
                wavefront.capture_row(c, t, dim) for t in range(wavefront.cleanup_ticks(dim) + 2)
            ]
            captured = [r for r in rows if r is not None]
            assert captured == list(range(dim))

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_groups_drain_in_their_windows(self, dim):
        """Every capture lands inside its group's window; windows are ordered."""
        sched = WavefrontSchedule(dim)
        windows = sched.drain_windows
        for r, c in wavefront.positions(dim):
            first, last = windows[wavefront.delay_group(r, c)]
            assert first <= wavefront.capture_tick(r, c) <= last
        for group in range(1, wavefront.num_groups(dim)):
            assert windows[group][0] == windows[group - 1][1] + 1

    @pytest.mark.parametrize("dim", [2, 3, 4, 5, 8])
    def test_cleanup_length(self, dim):
        """Edge groups take one tick, every other group two."""
        assert WavefrontSchedule(dim).cleanup_length == 4 * dim - 4

    def test_cleanup_length_single_pe(self):
        assert WavefrontSchedule(1).cleanup_length == 1

    @pytest.mark.parametrize("dim", GRID_SIZES)
    def test_drained_pes_are_cleared(self, dim):
        last = wavefront.cleanup_last_tick(dim)
        assert wavefront.cleanup_modes(dim, last + 1) == [[PEMode.CLEAR] * dim for _ in range(dim)]

    def test_small_grid_schedule_n2(self):
        """N = 2 drains in four ticks, one capture per tick."""
        sched = WavefrontSchedule(2)
        assert sched.cleanup_length == 4
        assert sched.captures == {0: [(0, 0)], 1: [(0, 1)], 2: [(1, 0)], 3: [(1, 1)]}
        assert sched.emit_ticks == {(0, 0): 0, (0, 1): 1, (1, 0): 1, (1, 1): 2}

    def test_cleanup_schedule_n4(self):
        """The full twelve-tick N = 4 cleanup schedule."""
        sched = WavefrontSchedule(4)
        assert sched.cleanup_length == 12
        assert wavefront.cleanup_last_tick(4) == 11

        assert sched.drain_windows == {
            0: (0, 0),
            1: (1, 2),
            2: (3, 4),
            3: (5, 6),
            4: (7, 8),
            5: (9, 10),
            6: (11, 11),
        }

        assert sched.captures == {
            0: [(0, 0)],
            1: [(0, 1)],
            2: [(1, 0)],
            3: [(0, 2), (1, 1)],
            4: [(2, 0)],
            5: [(0, 3), (1, 2), (2, 1)],
            6: [(3, 0)],
            7: [(1, 3), (2, 2), (3, 1)],
            8: [],
            9: [(2, 3), (3, 2)],
            10: [],
            11: [(3, 3)],
        }

        E, R, A, X = PEMode.EMIT, PEMode.RELAY, PEMode.ACCUMULATE, PEMode.CLEAR
        table = [
            # t = 0
            [[E, A, A, A], [A, A, A, A], [A, A, A, A], [A, A, A, A]],
            # t = 1
            [[R, E, A, A], [E, A, A, A], [A, A, A, A], [A, A, A, A]],
            # t = 2
            [[R, R, A, A], [R, E, A, A], [E, A, A, A], [A, A, A, A]],
            # t = 3
            [[R, R, E, A], [R, R, A, A], [R, E, A, A], [E, A, A, A]],
            # t = 4
            [[R, R, R, A], [R, R, E, A], [R, R, A, A], [X, E, A, A]],
            # t = 5
            [[R, R, R, E], [R, R, R, A], [X, R, E, A], [X, X, A, A]],
            # t = 6
            [[R, R, R, R], [X, R, R, E], [X, X, R, A], [X, X, E, A]],
            # t = 7
            [[X, R, R, R], [X, X, R, R], [X, X, R, E], [X, X, X, A]],
            # t = 8
            [[X, X, R, R], [X, X, R, R], [X, X, X, R], [X, X, X, E]],
            # t = 9
            [[X, X, R, R], [X, X, X, R], [X, X, X, R], [X, X, X, X]],
            # t = 10
            [[X, X, X, R], [X, X, X, R], [X, X, X, X], [X, X, X, X]],
            # t = 11
            [[X, X, X, R], [X, X, X, X], [X, X, X, X], [X, X, X, X]],
        ]
        for tick, modes in enumerate(table):
            assert wavefront.cleanup_modes(4, tick) == modes, f"tick {tick}"
        assert sched.cleanup() == table
