"""
TimetableSnapshot: one consistent in-memory state of a timetable session.

The editor owns a snapshot and mutates it in place. Background checks run
on a deep copy taken on the editor's thread, so nothing the worker reads
can change under it.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from config import EngineSettings
from errors import StructuralError
from jobs.models import Job
from jobs.path import JobPath
from jobs.shifts import Shift
from network.graph import NetworkGraph
from rollingstock.ledger import RollingStockLedger
from rollingstock.models import Owner, RollingStockModel, RollingStockPiece

logger = logging.getLogger(__name__)


@dataclass
class TimetableSnapshot:
    graph: NetworkGraph = field(default_factory=NetworkGraph)
    jobs: dict[int, Job] = field(default_factory=dict)
    models: dict[int, RollingStockModel] = field(default_factory=dict)
    owners: dict[int, Owner] = field(default_factory=dict)
    pieces: dict[int, RollingStockPiece] = field(default_factory=dict)
    shifts: dict[int, Shift] = field(default_factory=dict)
    _last_stop_id: int = field(default=0, repr=False)

    def copy(self) -> "TimetableSnapshot":
        return copy.deepcopy(self)

    def next_stop_id(self) -> int:
        # Also counts ids handed out for jobs not added yet (copied paths)
        used = max((s.id for j in self.jobs.values() for s in j.stops), default=0)
        self._last_stop_id = max(self._last_stop_id, used) + 1
        return self._last_stop_id

    def next_job_id(self) -> int:
        return max(self.jobs, default=0) + 1

    def job_path(self, job_id: int, settings: EngineSettings | None = None) -> JobPath:
        """Editor for a job, allocating stop ids unique across the timetable."""
        try:
            job = self.jobs[job_id]
        except KeyError:
            raise StructuralError(f"Job {job_id} does not exist.") from None
        return JobPath(job, self.graph, settings, self.pieces, next_stop_id=self.next_stop_id)

    def add_job(self, job: Job, settings: EngineSettings | None = None) -> None:
        """Register a new job after checking its path and feasibility."""
        if job.id in self.jobs:
            raise StructuralError(f"Job {job.id} already exists.")
        JobPath(job, self.graph, settings, self.pieces).validate_for_save()
        self.jobs[job.id] = job
        logger.info("Job %s added (%d stops).", job.name, len(job.stops))

    def remove_job(self, job_id: int) -> Job:
        try:
            job = self.jobs.pop(job_id)
        except KeyError:
            raise StructuralError(f"Job {job_id} does not exist.") from None
        logger.info("Job %s removed.", job.name)
        return job

    def add_piece(self, piece: RollingStockPiece) -> None:
        if piece.id in self.pieces:
            raise StructuralError(f"Rollingstock {piece.id} already exists.")
        if any(p.model.id == piece.model.id and p.number == piece.number
               for p in self.pieces.values()):
            raise StructuralError(f"{piece.display_name} already exists.")
        self.models.setdefault(piece.model.id, piece.model)
        self.pieces[piece.id] = piece

    def remove_piece(self, rs_id: int) -> None:
        """Remove a piece no job couples or uncouples."""
        users = sorted({
            job.id for job in self.jobs.values() for op in job.couplings() if op.rs_id == rs_id
        })
        if users:
            raise StructuralError(f"Rollingstock {rs_id} is used by jobs {users}.")
        self.pieces.pop(rs_id, None)

    def ledger(self) -> RollingStockLedger:
        return RollingStockLedger(self.jobs.values(), self.pieces.values(), self.graph)
