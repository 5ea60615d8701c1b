"""
Tests for checker.crossings: occupancy intervals, crossing / passing
detection, ordering and the per-job ConflictIndex.
"""

import pytest

from checker.background import CancelToken
from checker.crossings import ConflictIndex, detect_conflicts, job_occupancies
from checker.schemas import ConflictKind
from conftest import ALPHA, BRAVO, CHARLIE, make_job
from errors import CheckCancelled
from jobs.times import hms_to_seconds as t
from network.models import SegmentConnection


@pytest.fixture
def down_a(graph):
    return make_job(graph, 1, [(ALPHA, "10:00", "10:00"), (BRAVO, "10:06", "10:06")])


@pytest.fixture
def up_b(graph):
    return make_job(graph, 2, [(BRAVO, "10:03", "10:03"), (ALPHA, "10:09", "10:09")])


def _on_segments(records):
    return [r for r in records if r.location.kind == "segment"]


# ---------------------------------------------------------------------------
# Occupancy
# ---------------------------------------------------------------------------

class TestOccupancy:
    def test_intervals_in_path_order(self, graph, down_a):
        occ = job_occupancies(graph, down_a)
        assert [(o.key, o.start, o.end) for o in occ] == [
            (("station", 101), t("10:00"), t("10:00")),
            (("segment", 1, 0), t("10:00"), t("10:06")),
            (("station", 201), t("10:06"), t("10:06")),
        ]

    def test_direction_of_reversed_run(self, graph, down_a, up_b):
        seg_a = job_occupancies(graph, down_a)[1]
        seg_b = job_occupancies(graph, up_b)[1]
        assert seg_a.key == seg_b.key
        assert seg_a.direction != seg_b.direction


# ---------------------------------------------------------------------------
# Crossings and passings
# ---------------------------------------------------------------------------

class TestDetectConflicts:
    def test_single_track_crossing(self, graph, down_a, up_b):
        records = detect_conflicts(graph, [down_a, up_b])
        assert len(records) == 1
        rec = records[0]
        assert rec.kind == ConflictKind.CROSSING
        assert (rec.job_a, rec.job_b) == (1, 2)
        assert rec.location.kind == "segment" and rec.location.name == "Alpha-Bravo"
        assert (rec.overlap_start, rec.overlap_end) == (t("10:03"), t("10:06"))
        assert (rec.stop_a, rec.stop_b) == (100, 200)

    def test_reported_once_whatever_the_order(self, graph, down_a, up_b):
        assert detect_conflicts(graph, [up_b, down_a]) == detect_conflicts(graph, [down_a, up_b])

    def test_passing_same_direction(self, graph, down_a):
        slow = make_job(graph, 3, [(ALPHA, "10:02", "10:02"), (BRAVO, "10:07", "10:07")])
        records = detect_conflicts(graph, [down_a, slow])
        assert [(r.kind, r.overlap_start, r.overlap_end) for r in records] == [
            (ConflictKind.PASSING, t("10:02"), t("10:06")),
        ]

    def test_touching_segment_intervals_do_not_conflict(self, graph, down_a):
        after = make_job(graph, 2, [(BRAVO, "10:06", "10:06"), (ALPHA, "10:12", "10:12")])
        assert _on_segments(detect_conflicts(graph, [down_a, after])) == []

    def test_station_track_overlap(self, graph):
        a = make_job(graph, 1, [
            (ALPHA, "10:00", "10:00"), (BRAVO, "10:06", "10:15"), (CHARLIE, "10:25", "10:25"),
        ])
        d = make_job(graph, 4, [
            (CHARLIE, "10:00", "10:00"), (BRAVO, "10:10", "10:12"), (ALPHA, "10:18", "10:18"),
        ])
        records = detect_conflicts(graph, [a, d])
        assert len(records) == 1
        rec = records[0]
        assert rec.location.kind == "station" and rec.location.track_id == 201
        assert rec.location.name == "Bravo"
        assert (rec.overlap_start, rec.overlap_end) == (t("10:10"), t("10:12"))
        # Leaving towards opposite sides
        assert rec.kind == ConflictKind.CROSSING

    def test_transit_point_still_occupies_track(self, graph):
        transit = make_job(graph, 5, [
            (ALPHA, "10:00", "10:00"), (BRAVO, "10:06", "10:06"), (CHARLIE, "10:16", "10:16"),
        ])
        transit.stops[1].transit = True
        dwelling = make_job(graph, 6, [
            (CHARLIE, "09:55", "09:55"), (BRAVO, "10:04", "10:10"), (ALPHA, "10:20", "10:20"),
        ])
        records = detect_conflicts(graph, [transit, dwelling])
        assert [(r.location.track_id, r.overlap_start, r.overlap_end) for r in records] == [
            (201, t("10:06"), t("10:06")),
        ]

    def test_double_track_separates_directions(self, graph, down_a, up_b):
        graph.gates[12].out_track_count = 2
        graph.gates[21].out_track_count = 2
        graph.segments[1].connections = [SegmentConnection(1, 1), SegmentConnection(2, 2)]
        up_b.stops[0].out_gate_track = 2
        assert detect_conflicts(graph, [down_a, up_b]) == []
        up_b.stops[0].out_gate_track = 1
        assert len(detect_conflicts(graph, [down_a, up_b])) == 1

    def test_job_never_conflicts_with_itself(self, graph):
        shuttle = make_job(graph, 1, [
            (ALPHA, "10:00", "10:00"), (BRAVO, "10:06", "10:06"), (ALPHA, "10:12", "10:12"),
        ])
        assert detect_conflicts(graph, [shuttle]) == []

    def test_identical_start_times_both_reported(self, graph, down_a):
        twin = make_job(graph, 2, [(ALPHA, "10:00", "10:00"), (BRAVO, "10:06", "10:06")])
        kinds = sorted(r.location.kind for r in detect_conflicts(graph, [down_a, twin]))
        assert kinds == ["segment", "station", "station"]

    def test_sorted_by_time_then_location(self, graph, down_a, up_b):
        late = make_job(graph, 7, [(BRAVO, "10:20", "10:20"), (CHARLIE, "10:30", "10:30")])
        late_up = make_job(graph, 8, [(CHARLIE, "10:22", "10:22"), (BRAVO, "10:32", "10:32")])
        records = detect_conflicts(graph, [late_up, late, up_b, down_a])
        starts = [r.overlap_start for r in records]
        assert starts == sorted(starts)
        assert [r.location.name for r in records] == ["Alpha-Bravo", "Bravo-Charlie"]

    def test_only_jobs(self, graph, down_a, up_b):
        slow = make_job(graph, 3, [(ALPHA, "10:02", "10:02"), (BRAVO, "10:07", "10:07")])
        records = detect_conflicts(graph, [down_a, up_b, slow], only_jobs={3})
        assert records and all(3 in (r.job_a, r.job_b) for r in records)

    def test_cancelled_check_raises(self, graph, down_a, up_b):
        token = CancelToken()
        token.cancel()
        with pytest.raises(CheckCancelled):
            detect_conflicts(graph, [down_a, up_b], cancel=token)


# ---------------------------------------------------------------------------
# ConflictIndex
# ---------------------------------------------------------------------------

class TestConflictIndex:
    def test_group_and_remove(self, graph, down_a, up_b):
        slow = make_job(graph, 3, [(ALPHA, "10:02", "10:02"), (BRAVO, "10:07", "10:07")])
        index = ConflictIndex(detect_conflicts(graph, [down_a, up_b, slow]))
        assert index.jobs() == {1, 2, 3}
        assert all(2 in (r.job_a, r.job_b) for r in index.by_job(2))
        dropped = index.remove_job(2)
        assert dropped > 0
        assert index.by_job(2) == []
        assert len(index) == len(index.by_job(1))

    def test_merge_replaces_checked_jobs(self, graph, down_a, up_b):
        index = ConflictIndex(detect_conflicts(graph, [down_a, up_b]))
        assert len(index) == 1
        # Job 2 moved an hour later: re-check it alone
        for stop in up_b.stops:
            stop.arrival += 3600
            stop.departure += 3600
        index.merge(detect_conflicts(graph, [down_a, up_b], only_jobs={2}), checked_jobs=[2])
        assert len(index) == 0

    def test_merge_does_not_duplicate(self, graph, down_a, up_b):
        records = detect_conflicts(graph, [down_a, up_b])
        index = ConflictIndex(records)
        index.merge(records)
        assert index.all() == records
