"""
Track occupancy conflicts between jobs.

Every job, read against the network, occupies a sequence of tracks:

  stop i   : station track of the stop        [arrival_i,   departure_i]
  leg i→i+1: physical track of the segment    [departure_i, arrival_i+1]
             (the one entered from the stop's out gate track)

Each interval carries a direction: the side a train leaves the station
track towards, or the way a segment is run (as drawn / reversed).

Per track, intervals are sorted by start and swept; every overlapping pair
from two different jobs is one conflict:

  opposite directions → CROSSING     same direction → PASSING

Transit stops are zero-length intervals; a zero-length interval overlaps
anything whose closed range contains its instant. Output is sorted by
(overlap start, location name, job a, job b) and each pair on a track is
reported once, with job_a < job_b.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from checker.schemas import ConflictKind, ConflictLocation, ConflictRecord
from jobs.models import Job
from network.graph import NetworkGraph
from network.models import Side

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def raise_if_cancelled(self) -> None: ...


@dataclass(frozen=True)
class Occupancy:
    job_id: int
    stop_id: int
    key: tuple
    direction: int
    start: int
    end: int


def _overlap(a: Occupancy, b: Occupancy) -> tuple[int, int] | None:
    start, end = max(a.start, b.start), min(a.end, b.end)
    if a.start == a.end or b.start == b.end:
        return (start, end) if start <= end else None
    return (start, end) if start < end else None


def job_occupancies(graph: NetworkGraph, job: Job) -> list[Occupancy]:
    """Occupancy intervals of one job, in path order."""
    out: list[Occupancy] = []
    last = len(job.stops) - 1
    for idx, stop in enumerate(job.stops):
        if stop.track_id is not None and stop.track_id in graph.tracks:
            if stop.out_gate_id is not None:
                side = graph.gates[stop.out_gate_id].side
            elif stop.in_gate_id is not None:
                # Last stop: keeps heading away from where it came in
                side = graph.gates[stop.in_gate_id].side.opposite()
            else:
                side = Side.WEST
            out.append(Occupancy(
                job_id=job.id,
                stop_id=stop.id,
                key=("station", stop.track_id),
                direction=int(side),
                start=stop.arrival,
                end=stop.departure,
            ))
        else:
            logger.debug("Job %s stop %s has no station track; skipped.", job.id, stop.id)

        segment = stop.next_segment
        if idx == last or segment is None or segment.id not in graph.segments:
            continue
        index = segment.physical_track_index(stop.out_gate_track or 1)
        out.append(Occupancy(
            job_id=job.id,
            stop_id=stop.id,
            key=("segment", segment.id, index),
            direction=int(segment.reversed),
            start=stop.departure,
            end=job.stops[idx + 1].arrival,
        ))
    return out


def _location(graph: NetworkGraph, key: tuple) -> ConflictLocation:
    if key[0] == "station":
        track = graph.tracks[key[1]]
        station = graph.stations[track.station_id]
        return ConflictLocation(kind="station", id=station.id, name=station.name, track_id=track.id)
    segment = graph.segments[key[1]]
    return ConflictLocation(
        kind="segment", id=segment.id, name=segment.name, track_id=None, track_index=key[2]
    )


def _sweep(intervals: list[Occupancy]) -> Iterable[tuple[Occupancy, Occupancy, int, int]]:
    active: list[Occupancy] = []
    for occ in sorted(intervals, key=lambda o: (o.start, o.end, o.job_id, o.stop_id)):
        active = [a for a in active if a.end >= occ.start]
        for other in active:
            if other.job_id == occ.job_id:
                continue
            window = _overlap(other, occ)
            if window is not None:
                yield other, occ, window[0], window[1]
        active.append(occ)


def detect_conflicts(
    graph: NetworkGraph,
    jobs: Iterable[Job],
    cancel: Cancellable | None = None,
    only_jobs: set[int] | None = None,
) -> list[ConflictRecord]:
    """
    All crossings and passings among jobs.

    With only_jobs, only pairs involving at least one of those jobs are
    reported (a partial re-check after editing them). `cancel` is polled
    between tracks and raises CheckCancelled to abort.
    """
    by_track: dict[tuple, list[Occupancy]] = {}
    for job in jobs:
        for occ in job_occupancies(graph, job):
            by_track.setdefault(occ.key, []).append(occ)

    records: list[ConflictRecord] = []
    for key in sorted(by_track, key=repr):
        if cancel is not None:
            cancel.raise_if_cancelled()
        intervals = by_track[key]
        if len({o.job_id for o in intervals}) < 2:
            continue
        location = _location(graph, key)
        for a, b, start, end in _sweep(intervals):
            if only_jobs is not None and a.job_id not in only_jobs and b.job_id not in only_jobs:
                continue
            if a.job_id > b.job_id:
                a, b = b, a
            records.append(ConflictRecord(
                job_a=a.job_id,
                job_b=b.job_id,
                location=location,
                kind=ConflictKind.PASSING if a.direction == b.direction else ConflictKind.CROSSING,
                overlap_start=start,
                overlap_end=end,
                stop_a=a.stop_id,
                stop_b=b.stop_id,
            ))

    records.sort(key=lambda r: (r.overlap_start, r.location.name, r.job_a, r.job_b))
    logger.info("Conflict check: %d tracks, %d conflicts.", len(by_track), len(records))
    return records


def _record_key(record: ConflictRecord) -> tuple:
    loc = record.location
    return (
        record.job_a, record.job_b, loc.kind, loc.id, loc.track_id, loc.track_index,
        record.overlap_start, record.overlap_end,
    )


class ConflictIndex:
    """
    Conflicts grouped per job, so a re-check of a few jobs can replace just
    their entries.
    """

    def __init__(self, records: Iterable[ConflictRecord] = ()) -> None:
        self._records: dict[tuple, ConflictRecord] = {}
        self.merge(records)

    def __len__(self) -> int:
        return len(self._records)

    def all(self) -> list[ConflictRecord]:
        return sorted(
            self._records.values(),
            key=lambda r: (r.overlap_start, r.location.name, r.job_a, r.job_b),
        )

    def by_job(self, job_id: int) -> list[ConflictRecord]:
        return [r for r in self.all() if job_id in (r.job_a, r.job_b)]

    def jobs(self) -> set[int]:
        return {j for r in self._records.values() for j in (r.job_a, r.job_b)}

    def remove_job(self, job_id: int) -> int:
        """Drop every conflict involving a job; returns how many were dropped."""
        stale = [k for k, r in self._records.items() if job_id in (r.job_a, r.job_b)]
        for key in stale:
            del self._records[key]
        return len(stale)

    def merge(self, records: Iterable[ConflictRecord], checked_jobs: Iterable[int] = ()) -> None:
        """
        Add records from a re-check. Old entries of checked_jobs go first, so
        conflicts those jobs no longer have disappear.
        """
        for job_id in checked_jobs:
            self.remove_job(job_id)
        for record in records:
            self._records[_record_key(record)] = record
