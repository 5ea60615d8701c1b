"""
RollingStockLedger: where every rollingstock piece is, at any instant.

The ledger is derived entirely from the coupling operations attached to job
stops; it stores nothing of its own. Build a new ledger after any edit.

Replay, per piece:
  1. Collect its operations from every job.
  2. Sort by (stop arrival, uncouple-before-couple, job id, stop order).
  3. Run the two-state machine, starting from Free(anywhere):

       Free(station, since) ──Couple at same station──▶ Coupled(job, since)
       Coupled(job, since)  ──Uncouple by same job────▶ Free(stop station, since)

     A first use is legal at any station. Anything else (coupling while
     coupled, coupling where the piece is not, uncoupling while free or from
     another job) becomes a CouplingIssue and the operation is excluded
     from the rest of that piece's replay. Excluded operations stay visible
     in `issues` and `plan()`.

Coupling an electric-only engine at a stop whose next segment is not
electrified is accepted and reported as a ConsistencyWarning.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import Iterable, Union

from checker.schemas import CouplingIssue, CouplingIssueKind, RsPlanRow
from errors import ConsistencyWarning, WarningCode
from jobs.models import CouplingDirection, CouplingOperation, Job, Stop
from network.graph import NetworkGraph
from rollingstock.models import RollingStockPiece

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Free:
    station_id: int | None  # None until first use: available anywhere
    since: int | None


@dataclass(frozen=True)
class Coupled:
    job_id: int
    stop_id: int
    since: int


RsState = Union[Free, Coupled]

NEVER_USED = Free(station_id=None, since=None)


@dataclass(frozen=True)
class LedgerEntry:
    """One coupling operation placed on the piece's timeline."""
    op: CouplingOperation
    job: Job
    stop: Stop
    stop_index: int
    valid: bool

    @property
    def time(self) -> int:
        return self.stop.arrival


def _sort_key(entry: LedgerEntry) -> tuple[int, int, int, int]:
    # Uncoupling sorts first at equal times so a piece released at 10:00 can
    # be taken by another job at 10:00.
    return (entry.stop.arrival, int(entry.op.direction), entry.job.id, entry.stop_index)


class RollingStockLedger:
    def __init__(
        self,
        jobs: Iterable[Job],
        pieces: Iterable[RollingStockPiece],
        graph: NetworkGraph,
    ) -> None:
        self.graph = graph
        self.pieces: dict[int, RollingStockPiece] = {p.id: p for p in pieces}
        self.issues: list[CouplingIssue] = []
        self.warnings: list[ConsistencyWarning] = []
        self._entries: dict[int, list[LedgerEntry]] = {}
        # rs_id → parallel lists of transition times / states after transition
        self._times: dict[int, list[int]] = {}
        self._states: dict[int, list[RsState]] = {}

        by_piece: dict[int, list[LedgerEntry]] = {}
        op_count = 0
        for job in jobs:
            for idx, stop in enumerate(job.stops):
                for op in stop.couplings:
                    op_count += 1
                    by_piece.setdefault(op.rs_id, []).append(
                        LedgerEntry(op=op, job=job, stop=stop, stop_index=idx, valid=True)
                    )

        for rs_id in sorted(by_piece):
            self._replay_piece(rs_id, sorted(by_piece[rs_id], key=_sort_key))

        logger.info(
            "Ledger replayed: %d operations on %d pieces, %d issues, %d warnings.",
            op_count, len(by_piece), len(self.issues), len(self.warnings),
        )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def _replay_piece(self, rs_id: int, entries: list[LedgerEntry]) -> None:
        piece = self.pieces.get(rs_id)
        state: RsState = NEVER_USED
        replayed: list[LedgerEntry] = []
        times: list[int] = []
        states: list[RsState] = []

        for entry in entries:
            stop = entry.stop
            issue_kind: CouplingIssueKind | None = None
            new_state: RsState | None = None

            if piece is None:
                issue_kind = CouplingIssueKind.UNKNOWN_PIECE
            elif entry.op.direction == CouplingDirection.COUPLE:
                if isinstance(state, Coupled):
                    issue_kind = CouplingIssueKind.DOUBLE_COUPLING
                elif state.station_id is not None and state.station_id != stop.station_id:
                    issue_kind = CouplingIssueKind.WRONG_STATION
                else:
                    new_state = Coupled(job_id=entry.job.id, stop_id=stop.id, since=entry.time)
                    self._check_traction(piece, entry)
            else:
                if isinstance(state, Free):
                    issue_kind = CouplingIssueKind.UNCOUPLE_WHILE_FREE
                elif state.job_id != entry.job.id:
                    issue_kind = CouplingIssueKind.UNCOUPLE_OTHER_JOB
                else:
                    new_state = Free(station_id=stop.station_id, since=entry.time)

            if issue_kind is not None:
                self._report(rs_id, piece, entry, state, issue_kind)
                replayed.append(LedgerEntry(
                    op=entry.op, job=entry.job, stop=stop,
                    stop_index=entry.stop_index, valid=False,
                ))
                continue

            state = new_state
            times.append(entry.time)
            states.append(state)
            replayed.append(entry)

        self._entries[rs_id] = replayed
        self._times[rs_id] = times
        self._states[rs_id] = states

    def _report(
        self,
        rs_id: int,
        piece: RollingStockPiece | None,
        entry: LedgerEntry,
        state: RsState,
        kind: CouplingIssueKind,
    ) -> None:
        rs_name = piece.display_name if piece else f"#{rs_id}"
        job_name = entry.job.name
        if kind == CouplingIssueKind.DOUBLE_COUPLING:
            message = f"{rs_name} coupled to {job_name} while still coupled to job {state.job_id}."
        elif kind == CouplingIssueKind.WRONG_STATION:
            where = self._station_name(state.station_id)
            message = f"{rs_name} coupled to {job_name} but it was left at {where}."
        elif kind == CouplingIssueKind.UNCOUPLE_WHILE_FREE:
            message = f"{rs_name} uncoupled from {job_name} but it is not coupled."
        elif kind == CouplingIssueKind.UNCOUPLE_OTHER_JOB:
            message = f"{rs_name} uncoupled from {job_name} but it is coupled to job {state.job_id}."
        else:
            message = f"Rollingstock {rs_id} used by {job_name} does not exist."

        issue = CouplingIssue(
            rs_id=rs_id,
            rs_name=rs_name,
            job_id=entry.job.id,
            stop_id=entry.stop.id,
            station_id=entry.stop.station_id,
            time=entry.time,
            kind=kind,
            message=message,
        )
        logger.warning("Coupling issue: %s", message)
        self.issues.append(issue)

    def _check_traction(self, piece: RollingStockPiece, entry: LedgerEntry) -> None:
        segment = entry.stop.next_segment
        if not piece.model.is_electric_only or segment is None or segment.electrified:
            return
        warning = ConsistencyWarning(
            code=WarningCode.ELECTRIC_ON_NON_ELECTRIFIED,
            message=(
                f"Electric engine {piece.display_name} coupled to {entry.job.name} "
                f"before non-electrified segment '{segment.segment.name}'."
            ),
            job_id=entry.job.id,
            stop_id=entry.stop.id,
            rs_id=piece.id,
        )
        logger.warning(warning.message)
        self.warnings.append(warning)

    def _station_name(self, station_id: int | None) -> str:
        station = self.graph.stations.get(station_id)
        return station.name if station else f"station {station_id}"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def state_at(self, rs_id: int, t: int) -> RsState:
        """State of a piece at instant t (operations at t already applied)."""
        times = self._times.get(rs_id, [])
        pos = bisect.bisect_right(times, t)
        if pos == 0:
            return NEVER_USED
        return self._states[rs_id][pos - 1]

    def first_use(self, rs_id: int) -> tuple[int, int] | None:
        """(job id, stop id) of the first accepted coupling, or None if unused."""
        for entry in self._entries.get(rs_id, []):
            if entry.valid and entry.op.direction == CouplingDirection.COUPLE:
                return entry.job.id, entry.stop.id
        return None

    def is_free_between(self, rs_id: int, station_id: int, t0: int, t1: int) -> bool:
        """True if the piece sits free at station_id for the whole of [t0, t1]."""
        state = self.state_at(rs_id, t0)
        if not isinstance(state, Free):
            return False
        if state.station_id not in (None, station_id):
            return False
        times = self._times.get(rs_id, [])
        # No transition inside (t0, t1]
        return bisect.bisect_right(times, t0) == bisect.bisect_right(times, t1)

    def free_pieces_at(self, station_id: int, t0: int, t1: int) -> list[RollingStockPiece]:
        """Pieces free at a station for the whole window, unused pieces included."""
        free = [
            piece for piece in self.pieces.values()
            if self.is_free_between(piece.id, station_id, t0, t1)
        ]
        return sorted(free, key=lambda p: (p.model.name, p.number))

    def issues_for(self, rs_id: int) -> list[CouplingIssue]:
        return [issue for issue in self.issues if issue.rs_id == rs_id]

    def plan(self, rs_id: int) -> list[RsPlanRow]:
        """
        Every operation on a piece in replay order, excluded ones included,
        with the two display flags of the rollingstock plan view.
        """
        rows: list[RsPlanRow] = []
        prev: LedgerEntry | None = None
        for entry in self._entries.get(rs_id, []):
            coupling = entry.op.direction == CouplingDirection.COUPLE
            rows.append(RsPlanRow(
                job_id=entry.job.id,
                job_name=entry.job.name,
                stop_id=entry.stop.id,
                station_id=entry.stop.station_id,
                station_name=self._station_name(entry.stop.station_id),
                arrival=entry.stop.arrival,
                departure=entry.stop.departure,
                operation="coupled" if coupling else "uncoupled",
                valid=entry.valid,
                teleported=bool(
                    coupling and prev is not None
                    and prev.stop.station_id != entry.stop.station_id
                ),
                repeated=bool(prev is not None and prev.op.direction == entry.op.direction),
            ))
            prev = entry
        return rows


def job_composition(
    job: Job, stop_index: int, pieces: dict[int, RollingStockPiece]
) -> list[RollingStockPiece]:
    """
    Pieces making up the train when it leaves job.stops[stop_index].

    Job-local: couplings add, uncouplings remove, in stop order. Unknown
    piece ids are skipped.
    """
    coupled: dict[int, RollingStockPiece] = {}
    for stop in job.stops[: stop_index + 1]:
        for op in sorted(stop.couplings, key=lambda o: int(o.direction)):
            if op.direction == CouplingDirection.UNCOUPLE:
                coupled.pop(op.rs_id, None)
            elif op.rs_id in pieces:
                coupled[op.rs_id] = pieces[op.rs_id]
    return list(coupled.values())
