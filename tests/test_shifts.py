import pytest

from conftest import ALPHA, BRAVO, CHARLIE, make_job
from errors import StructuralError
from jobs.shifts import assign_shift, busy_jobs, shift_jobs
from jobs.times import hms_to_seconds as t


@pytest.fixture
def jobs(graph):
    morning = make_job(graph, 1, [(ALPHA, "08:00", "08:00"), (BRAVO, "08:06", "08:06")])
    noon = make_job(graph, 2, [(BRAVO, "12:00", "12:00"), (CHARLIE, "12:10", "12:10")])
    morning.shift_id = noon.shift_id = 1
    other = make_job(graph, 3, [(ALPHA, "08:00", "08:00"), (BRAVO, "08:06", "08:06")])
    other.shift_id = 2
    return [morning, noon, other]


class TestBusyJobs:
    def test_overlap_in_window(self, jobs):
        assert [j.id for j in busy_jobs(jobs, 1, t("08:03"), t("09:00"))] == [1]

    def test_touching_window_is_not_busy(self, jobs):
        assert busy_jobs(jobs, 1, t("08:06"), t("12:00")) == []

    def test_other_shift_ignored(self, jobs):
        assert [j.id for j in busy_jobs(jobs, 2, 0, t("23:00"))] == [3]

    def test_exclude_job(self, jobs):
        assert busy_jobs(jobs, 1, t("08:00"), t("08:10"), exclude_job_id=1) == []

    def test_shift_jobs_in_running_order(self, jobs):
        assert [j.id for j in shift_jobs(list(reversed(jobs)), 1)] == [1, 2]


class TestAssignShift:
    def test_assign_free_slot(self, graph, jobs):
        job = make_job(graph, 4, [(CHARLIE, "10:00", "10:00"), (BRAVO, "10:10", "10:10")])
        assign_shift(jobs, job, 1)
        assert job.shift_id == 1

    def test_overlap_rejected(self, graph, jobs):
        job = make_job(graph, 4, [(CHARLIE, "08:01", "08:01"), (BRAVO, "08:11", "08:11")])
        with pytest.raises(StructuralError, match="overlaps R1"):
            assign_shift(jobs, job, 1)
        assert job.shift_id is None

    def test_unassign(self, jobs):
        assign_shift(jobs, jobs[0], None)
        assert jobs[0].shift_id is None
