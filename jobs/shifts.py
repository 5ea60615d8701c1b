"""
Job shifts: a named sequence of jobs run by the same crew or rake.

Jobs in one shift must not overlap in time. A job occupies the shift from
its first stop's arrival to its last stop's departure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from errors import StructuralError
from jobs.models import Job

logger = logging.getLogger(__name__)


@dataclass
class Shift:
    id: int
    name: str


def busy_jobs(
    jobs: Iterable[Job],
    shift_id: int,
    start: int,
    end: int,
    exclude_job_id: int | None = None,
) -> list[Job]:
    """Jobs of the shift running at some point inside (start, end), by start time."""
    busy = [
        job for job in jobs
        if job.shift_id == shift_id
        and job.id != exclude_job_id
        and job.stops
        and job.end > start
        and job.start < end
    ]
    return sorted(busy, key=lambda j: (j.start, j.id))


def assign_shift(jobs: Iterable[Job], job: Job, shift_id: int | None) -> None:
    """Put a job in a shift (None removes it), refusing time overlaps."""
    if shift_id is not None and job.stops:
        clash = busy_jobs(jobs, shift_id, job.start, job.end, exclude_job_id=job.id)
        if clash:
            names = ", ".join(j.name for j in clash)
            raise StructuralError(f"{job.name} overlaps {names} in shift {shift_id}.")
    job.shift_id = shift_id
    logger.debug("Job %s assigned to shift %s.", job.id, shift_id)


def shift_jobs(jobs: Iterable[Job], shift_id: int) -> list[Job]:
    """Jobs of a shift in running order."""
    return sorted(
        (j for j in jobs if j.shift_id == shift_id and j.stops),
        key=lambda j: (j.start, j.id),
    )
