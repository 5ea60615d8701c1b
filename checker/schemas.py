from __future__ import annotations
from enum import Enum
from typing import Literal
from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Track occupancy conflicts
# ---------------------------------------------------------------------------

class ConflictKind(str, Enum):
    CROSSING = "crossing"
    PASSING = "passing"


class ConflictLocation(BaseModel):
    kind: Literal["station", "segment"]
    id: int                  # station id or segment id
    name: str
    track_id: int | None     # station track, or None on a segment
    track_index: int = 0     # physical track of a multi-track segment


class ConflictRecord(BaseModel):
    job_a: int
    job_b: int
    location: ConflictLocation
    kind: ConflictKind
    overlap_start: int       # seconds past midnight
    overlap_end: int
    # Stops involved, for "show in editor" navigation
    stop_a: int | None = None
    stop_b: int | None = None


# ---------------------------------------------------------------------------
# Rollingstock coupling ledger
# ---------------------------------------------------------------------------

class CouplingIssueKind(str, Enum):
    DOUBLE_COUPLING = "double_coupling"
    WRONG_STATION = "wrong_station"
    UNCOUPLE_WHILE_FREE = "uncouple_while_free"
    UNCOUPLE_OTHER_JOB = "uncouple_other_job"
    UNKNOWN_PIECE = "unknown_piece"


class CouplingIssue(BaseModel):
    rs_id: int
    rs_name: str
    job_id: int
    stop_id: int
    station_id: int
    time: int
    kind: CouplingIssueKind
    message: str


class RsPlanRow(BaseModel):
    job_id: int
    job_name: str
    stop_id: int
    station_id: int
    station_name: str
    arrival: int
    departure: int
    operation: Literal["coupled", "uncoupled"]
    valid: bool
    # Coupled somewhere other than where the previous operation left it
    teleported: bool = False
    # Same operation as the previous row (coupled twice / uncoupled twice)
    repeated: bool = False
