"""
Error taxonomy shared by every engine module.

  StructuralError   : broken reference or violated invariant; the edit is
                      rejected before any state changes.
  FeasibilityError  : the schedule cannot physically run (e.g. electric-only
                      traction on a non-electrified segment). Editable, but
                      blocks saving.
  CheckCancelled    : a background computation hit a cancellation
                      checkpoint; its partial report is discarded.
  ConsistencyWarning: accepted but flagged. Collected into reports, never
                      raised.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class StructuralError(ValueError):
    pass


class FeasibilityError(ValueError):
    def __init__(self, message: str, job_id: int | None = None, stop_id: int | None = None):
        super().__init__(message)
        self.job_id = job_id
        self.stop_id = stop_id


class CheckCancelled(RuntimeError):
    pass


class WarningCode(str, Enum):
    GATE_TRACK_FALLBACK = "gate_track_fallback"
    ELECTRIC_ON_NON_ELECTRIFIED = "electric_on_non_electrified"
    TIMES_INCONSISTENT = "times_inconsistent"
    STOP_INVALID = "stop_invalid"
    LINE_NOT_ADJACENT = "line_not_adjacent"


class ConsistencyWarning(BaseModel):
    code: WarningCode
    message: str
    job_id: int | None = None
    stop_id: int | None = None
    rs_id: int | None = None
