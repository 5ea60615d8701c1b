"""
Job, Stop and CouplingOperation entities.

Times are integer seconds past midnight. A stop's in/out gate track is the
gate track number the train uses at that gate; `track_id` is the station
track (platform) it stops on or passes through.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

from errors import StructuralError
from network.models import SegmentRef


class JobCategory(IntEnum):
    FREIGHT = 0
    LIS = 1
    POSTAL = 2
    REGIONAL = 3
    FAST_REGIONAL = 4
    LOCAL = 5
    INTERCITY = 6
    EXPRESS = 7
    DIRECT = 8
    HIGH_SPEED = 9

    @property
    def prefix(self) -> str:
        return _CATEGORY_PREFIX[self]

    @property
    def is_passenger(self) -> bool:
        return self not in (JobCategory.FREIGHT, JobCategory.LIS, JobCategory.POSTAL)


_CATEGORY_PREFIX = {
    JobCategory.FREIGHT: "FRG",
    JobCategory.LIS: "LIS",
    JobCategory.POSTAL: "P",
    JobCategory.REGIONAL: "R",
    JobCategory.FAST_REGIONAL: "RV",
    JobCategory.LOCAL: "L",
    JobCategory.INTERCITY: "IC",
    JobCategory.EXPRESS: "EXP",
    JobCategory.DIRECT: "DIR",
    JobCategory.HIGH_SPEED: "AV",
}


class StopState(str, Enum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"


class StopType(str, Enum):
    FIRST = "first"
    NORMAL = "normal"
    TRANSIT = "transit"
    LAST = "last"


class CouplingDirection(IntEnum):
    UNCOUPLE = 0
    COUPLE = 1


@dataclass(frozen=True)
class CouplingOperation:
    rs_id: int
    job_id: int
    stop_id: int
    direction: CouplingDirection


@dataclass
class Stop:
    id: int
    job_id: int
    station_id: int
    arrival: int
    departure: int
    track_id: int | None = None
    transit: bool = False
    in_gate_id: int | None = None
    in_gate_track: int | None = None
    out_gate_id: int | None = None
    out_gate_track: int | None = None
    next_segment: SegmentRef | None = None
    couplings: list[CouplingOperation] = field(default_factory=list)
    state: StopState = StopState.PENDING
    invalid_reason: str | None = None

    def mark_valid(self) -> None:
        self.state = StopState.VALID
        self.invalid_reason = None

    def mark_invalid(self, reason: str) -> None:
        self.state = StopState.INVALID
        self.invalid_reason = reason


@dataclass
class Job:
    id: int
    category: JobCategory = JobCategory.FREIGHT
    stops: list[Stop] = field(default_factory=list)
    shift_id: int | None = None

    @property
    def name(self) -> str:
        return f"{self.category.prefix}{self.id}"

    @property
    def start(self) -> int | None:
        return self.stops[0].arrival if self.stops else None

    @property
    def end(self) -> int | None:
        return self.stops[-1].departure if self.stops else None

    def stop_type(self, index: int) -> StopType:
        if index == 0:
            return StopType.FIRST
        if index == len(self.stops) - 1:
            return StopType.LAST
        if self.stops[index].transit:
            return StopType.TRANSIT
        return StopType.NORMAL

    def index_of(self, stop_id: int) -> int:
        for idx, stop in enumerate(self.stops):
            if stop.id == stop_id:
                return idx
        raise StructuralError(f"Stop {stop_id} does not belong to job {self.id}.")

    def couplings(self) -> list[CouplingOperation]:
        return [op for stop in self.stops for op in stop.couplings]
