"""
Tests for rollingstock.ledger: replay of coupling operations into
Free / Coupled states, the issues it reports and its queries.
"""

import pytest

from checker.schemas import CouplingIssueKind
from conftest import ALPHA, BRAVO, CHARLIE, make_job
from errors import WarningCode
from jobs.models import CouplingDirection, CouplingOperation
from jobs.times import hms_to_seconds as t
from rollingstock.ledger import Coupled, Free, NEVER_USED, RollingStockLedger, job_composition

COUPLE, UNCOUPLE = CouplingDirection.COUPLE, CouplingDirection.UNCOUPLE


def _op(job, index, rs_id, direction):
    stop = job.stops[index]
    stop.couplings.append(CouplingOperation(rs_id, job.id, stop.id, direction))


@pytest.fixture
def job_a(graph):
    return make_job(graph, 1, [
        (ALPHA, "09:00", "09:00"), (BRAVO, "09:06", "09:10"), (CHARLIE, "09:20", "09:20"),
    ])


@pytest.fixture
def job_b(graph):
    return make_job(graph, 2, [(BRAVO, "09:30", "09:30"), (CHARLIE, "09:40", "09:40")])


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------

class TestReplay:
    def test_double_coupling(self, graph, job_a, job_b, coach):
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_b, 0, coach.id, COUPLE)
        ledger = RollingStockLedger([job_a, job_b], [coach], graph)
        assert [i.kind for i in ledger.issues] == [CouplingIssueKind.DOUBLE_COUPLING]
        assert ledger.issues[0].job_id == 2
        state = ledger.state_at(coach.id, t("10:00"))
        assert isinstance(state, Coupled) and state.job_id == 1

    def test_handover_between_jobs(self, graph, job_a, job_b, coach):
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_a, 1, coach.id, UNCOUPLE)
        _op(job_b, 0, coach.id, COUPLE)
        ledger = RollingStockLedger([job_a, job_b], [coach], graph)
        assert ledger.issues == []
        assert ledger.state_at(coach.id, t("08:00")) == NEVER_USED
        assert ledger.state_at(coach.id, t("09:15")) == Free(BRAVO, t("09:06"))
        assert ledger.state_at(coach.id, t("09:35")) == Coupled(2, 200, t("09:30"))
        assert ledger.first_use(coach.id) == (1, 100)

    def test_same_instant_uncouple_then_couple(self, graph, job_a, coach):
        job_b = make_job(graph, 2, [(BRAVO, "09:06", "09:06"), (CHARLIE, "09:16", "09:16")])
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_b, 0, coach.id, COUPLE)
        _op(job_a, 1, coach.id, UNCOUPLE)
        ledger = RollingStockLedger([job_b, job_a], [coach], graph)
        assert ledger.issues == []
        assert ledger.state_at(coach.id, t("09:06")).job_id == 2

    def test_wrong_station(self, graph, job_a, coach):
        job_b = make_job(graph, 2, [(CHARLIE, "10:00", "10:00"), (BRAVO, "10:10", "10:10")])
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_a, 1, coach.id, UNCOUPLE)
        _op(job_b, 0, coach.id, COUPLE)
        ledger = RollingStockLedger([job_a, job_b], [coach], graph)
        assert [i.kind for i in ledger.issues] == [CouplingIssueKind.WRONG_STATION]
        assert "Bravo" in ledger.issues[0].message
        # The illegal coupling is excluded: the piece stays at Bravo
        assert ledger.state_at(coach.id, t("10:30")) == Free(BRAVO, t("09:06"))

    def test_uncouple_while_free(self, graph, job_a, coach):
        _op(job_a, 1, coach.id, UNCOUPLE)
        ledger = RollingStockLedger([job_a], [coach], graph)
        assert [i.kind for i in ledger.issues] == [CouplingIssueKind.UNCOUPLE_WHILE_FREE]
        assert ledger.first_use(coach.id) is None

    def test_uncouple_from_other_job(self, graph, job_a, job_b, coach):
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_b, 1, coach.id, UNCOUPLE)
        ledger = RollingStockLedger([job_a, job_b], [coach], graph)
        assert [i.kind for i in ledger.issues] == [CouplingIssueKind.UNCOUPLE_OTHER_JOB]
        assert ledger.issues_for(coach.id) == ledger.issues

    def test_unknown_piece(self, graph, job_a):
        _op(job_a, 0, 77, COUPLE)
        ledger = RollingStockLedger([job_a], [], graph)
        assert [i.kind for i in ledger.issues] == [CouplingIssueKind.UNKNOWN_PIECE]
        assert ledger.issues[0].rs_name == "#77"

    def test_first_use_anywhere(self, graph, job_b, coach):
        _op(job_b, 0, coach.id, COUPLE)
        assert RollingStockLedger([job_b], [coach], graph).issues == []

    def test_replay_is_idempotent(self, graph, job_a, job_b, coach):
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_b, 0, coach.id, COUPLE)
        _op(job_b, 1, coach.id, UNCOUPLE)
        first = RollingStockLedger([job_a, job_b], [coach], graph)
        second = RollingStockLedger([job_b, job_a], [coach], graph)
        assert first.issues == second.issues
        assert first.plan(coach.id) == second.plan(coach.id)

    def test_electric_engine_before_diesel_segment_warns(self, graph, job_a, electric_engine):
        _op(job_a, 1, electric_engine.id, COUPLE)
        ledger = RollingStockLedger([job_a], [electric_engine], graph)
        assert ledger.issues == []
        assert [w.code for w in ledger.warnings] == [WarningCode.ELECTRIC_ON_NON_ELECTRIFIED]
        assert isinstance(ledger.state_at(electric_engine.id, t("09:07")), Coupled)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQueries:
    def test_is_free_between(self, graph, job_a, job_b, coach):
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_a, 1, coach.id, UNCOUPLE)
        _op(job_b, 0, coach.id, COUPLE)
        ledger = RollingStockLedger([job_a, job_b], [coach], graph)
        assert ledger.is_free_between(coach.id, BRAVO, t("09:06"), t("09:29"))
        assert not ledger.is_free_between(coach.id, BRAVO, t("09:06"), t("09:30"))
        assert not ledger.is_free_between(coach.id, ALPHA, t("09:10"), t("09:20"))
        assert not ledger.is_free_between(coach.id, ALPHA, t("09:01"), t("09:02"))

    def test_unused_piece_is_free_everywhere(self, graph, coach):
        ledger = RollingStockLedger([], [coach], graph)
        assert ledger.is_free_between(coach.id, CHARLIE, 0, t("23:59"))
        assert ledger.free_pieces_at(ALPHA, 0, 60) == [coach]

    def test_free_pieces_at(self, graph, job_a, coach, diesel_engine):
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_a, 1, coach.id, UNCOUPLE)
        _op(job_a, 0, diesel_engine.id, COUPLE)
        ledger = RollingStockLedger([job_a], [coach, diesel_engine], graph)
        assert ledger.free_pieces_at(BRAVO, t("09:10"), t("12:00")) == [coach]
        assert ledger.free_pieces_at(ALPHA, t("09:10"), t("12:00")) == []

    def test_plan_flags(self, graph, job_a, coach):
        job_b = make_job(graph, 2, [(CHARLIE, "10:00", "10:00"), (BRAVO, "10:10", "10:10")])
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_a, 1, coach.id, UNCOUPLE)
        _op(job_b, 0, coach.id, COUPLE)
        _op(job_b, 1, coach.id, COUPLE)
        rows = RollingStockLedger([job_a, job_b], [coach], graph).plan(coach.id)
        assert [(r.station_name, r.operation, r.valid) for r in rows] == [
            ("Alpha", "coupled", True),
            ("Bravo", "uncoupled", True),
            ("Charlie", "coupled", False),
            ("Bravo", "coupled", True),
        ]
        assert [r.teleported for r in rows] == [False, False, True, True]
        assert [r.repeated for r in rows] == [False, False, False, True]


class TestJobComposition:
    def test_composition_follows_stops(self, graph, job_a, coach, diesel_engine):
        pieces = {p.id: p for p in (coach, diesel_engine)}
        _op(job_a, 0, coach.id, COUPLE)
        _op(job_a, 0, diesel_engine.id, COUPLE)
        _op(job_a, 1, coach.id, UNCOUPLE)
        assert job_composition(job_a, 0, pieces) == [coach, diesel_engine]
        assert job_composition(job_a, 1, pieces) == [diesel_engine]

    def test_unknown_pieces_skipped(self, graph, job_a, coach):
        _op(job_a, 0, 99, COUPLE)
        assert job_composition(job_a, 0, {coach.id: coach}) == []
