"""
JobPath: a job's stop sequence, kept consistent with the network.

Editing rules:
  - Structural problems (missing station/gate/track/segment, a gate of
    another station, fewer than 2 stops) raise StructuralError and leave
    the job untouched.
  - Anything merely inconsistent (a disconnected gate track, times that do
    not match the travel time) is accepted, marked on the stop
    (StopState.INVALID + reason) and returned as ConsistencyWarnings.
  - Feasibility (can the coupled traction run on each leg) is checked by
    check_feasibility() while editing and enforced by validate_for_save().

Travel time for a leg:
    ceil(distance_km / min(segment max speed, train speed) * 60) minutes,
    at least MIN_TRAVEL_MINUTES. Train speed is the slowest piece coupled
    when the train leaves the stop, or the configured default if none is.

Edited stops are reset to StopState.PENDING; validate() settles every stop
to VALID or INVALID. Only an all-VALID job may use the fast "safe save"
path; INVALID stops never block an ordinary save.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from itertools import count
from typing import Callable

from config import EngineSettings
from errors import ConsistencyWarning, FeasibilityError, StructuralError, WarningCode
from jobs.models import CouplingDirection, CouplingOperation, Job, Stop, StopState, StopType
from network.graph import NetworkGraph
from network.models import SegmentRef, StationType
from rollingstock.ledger import job_composition
from rollingstock.models import RollingStockPiece

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StopTimes:
    stop_id: int
    arrival: int
    departure: int


def compute_travel_time(
    segment: SegmentRef, max_train_speed: float, min_minutes: int = 1
) -> int:
    """Minutes needed to run a segment at the lower of line and train speed."""
    speed = min(segment.max_speed_kmh, max_train_speed)
    if speed <= 0:
        raise StructuralError("Travel speed must be > 0.")
    # Rounded before ceil so 10 km at 100 km/h is 6 minutes, not 7
    minutes = math.ceil(round(segment.distance_km * 60 / speed, 6))
    return max(min_minutes, minutes)


class JobPath:
    def __init__(
        self,
        job: Job,
        graph: NetworkGraph,
        settings: EngineSettings | None = None,
        pieces: dict[int, RollingStockPiece] | None = None,
        next_stop_id: Callable[[], int] | None = None,
    ) -> None:
        self.job = job
        self.graph = graph
        self.settings = settings or EngineSettings()
        self.pieces = pieces or {}
        # Stop ids must be unique across the timetable; the host passes its
        # allocator. Standalone use numbers on from the job's highest id.
        self._ids = count(max((s.id for s in job.stops), default=0) + 1)
        self._allocate = next_stop_id

    @property
    def stops(self) -> list[Stop]:
        return self.job.stops

    def _new_stop_id(self) -> int:
        if self._allocate is not None:
            return self._allocate()
        return next(self._ids)

    # ------------------------------------------------------------------
    # Travel time
    # ------------------------------------------------------------------

    def train_speed_at(self, index: int) -> float:
        """Speed limit of the train as it leaves stops[index]."""
        composition = job_composition(self.job, index, self.pieces)
        speeds = [p.model.max_speed_kmh for p in composition if p.model.max_speed_kmh > 0]
        return min(speeds) if speeds else self.settings.default_train_speed_kmh

    def leg_seconds(self, index: int, train_speed: float | None = None) -> int:
        """Travel time in seconds from stops[index] to the next stop."""
        segment = self.stops[index].next_segment
        if segment is None:
            raise StructuralError(f"Stop {self.stops[index].id} has no segment to the next stop.")
        speed = train_speed if train_speed is not None else self.train_speed_at(index)
        return compute_travel_time(segment, speed, self.settings.min_travel_minutes) * 60

    def preview_travel_times(self, train_speed: float | None = None) -> list[StopTimes]:
        """
        Stop times recomputed from travel times, keeping every dwell and the
        first departure. Nothing is modified; see apply_times().
        """
        self.check_structure()
        result = [StopTimes(self.stops[0].id, self.stops[0].arrival, self.stops[0].departure)]
        for idx in range(1, len(self.stops)):
            stop = self.stops[idx]
            dwell = stop.departure - stop.arrival
            arrival = result[-1].departure + self.leg_seconds(idx - 1, train_speed)
            result.append(StopTimes(stop.id, arrival, arrival + dwell))
        return result

    def apply_times(self, times: list[StopTimes]) -> None:
        by_id = {t.stop_id: t for t in times}
        for stop in self.stops:
            new = by_id.get(stop.id)
            if new is None:
                continue
            if new.departure < new.arrival:
                raise StructuralError(f"Stop {stop.id}: departure before arrival.")
            stop.arrival, stop.departure = new.arrival, new.departure
            stop.state = StopState.PENDING

    # ------------------------------------------------------------------
    # Time edits
    # ------------------------------------------------------------------

    def set_departure(self, stop: Stop, time: int, rebase_following: bool) -> list[ConsistencyWarning]:
        """
        Move a stop's departure. With rebase_following every later stop shifts
        by the same delta; otherwise only this stop changes and a mismatch
        with the next leg's travel time is flagged.
        """
        idx = self.job.index_of(stop.id)
        if idx == 0 or stop.transit:
            # First stop and transits have no dwell
            new_arrival = time
        else:
            new_arrival = stop.arrival
        if time < new_arrival:
            raise StructuralError(
                f"Stop {stop.id}: departure must not precede arrival."
            )
        delta = time - stop.departure
        arrival_moved = new_arrival != stop.arrival
        stop.arrival, stop.departure = new_arrival, time
        stop.state = StopState.PENDING
        warnings = self._check_leg(idx - 1) if arrival_moved and idx > 0 else []
        if rebase_following:
            self._shift_from(idx + 1, delta)
            return warnings
        return warnings + self._check_leg(idx)

    def set_arrival(self, stop: Stop, time: int, rebase_following: bool) -> list[ConsistencyWarning]:
        """Move a stop's arrival keeping its dwell; see set_departure()."""
        idx = self.job.index_of(stop.id)
        delta = time - stop.arrival
        stop.arrival += delta
        stop.departure += delta
        stop.state = StopState.PENDING
        warnings = self._check_leg(idx - 1) if idx > 0 else []
        if rebase_following:
            self._shift_from(idx + 1, delta)
        else:
            warnings += self._check_leg(idx)
        return warnings

    def _shift_from(self, index: int, delta: int) -> None:
        for stop in self.stops[index:]:
            stop.arrival += delta
            stop.departure += delta
            stop.state = StopState.PENDING

    def _check_leg(self, index: int) -> list[ConsistencyWarning]:
        """Warn if the train cannot make it from stops[index] to the next in time."""
        if index < 0 or index >= len(self.stops) - 1:
            return []
        stop, nxt = self.stops[index], self.stops[index + 1]
        if stop.next_segment is None:
            return []
        needed = self.leg_seconds(index)
        if nxt.arrival - stop.departure >= needed:
            return []
        nxt.state = StopState.PENDING
        warning = ConsistencyWarning(
            code=WarningCode.TIMES_INCONSISTENT,
            message=(
                f"{self.job.name}: {needed // 60} min needed to reach stop {nxt.id}, "
                f"only {(nxt.arrival - stop.departure) // 60} min scheduled."
            ),
            job_id=self.job.id,
            stop_id=nxt.id,
        )
        logger.warning(warning.message)
        return [warning]

    # ------------------------------------------------------------------
    # Path edits
    # ------------------------------------------------------------------

    def insert_stop(
        self,
        after_stop: Stop | None,
        station_id: int,
        gate_in_id: int | None,
        gate_out_id: int | None,
    ) -> tuple[Stop, list[ConsistencyWarning]]:
        """
        Insert a stop after after_stop (None inserts a new first stop).

        Segments are looked up between the neighbours' gates and the given
        gates; both adjoining stops get their segment, gate and gate track
        fields recomputed. The new stop's times follow from travel time and
        the category's default dwell; later stops are shifted to keep their
        own dwell and travel times.
        """
        station = self.graph.station(station_id)
        idx = 0 if after_stop is None else self.job.index_of(after_stop.id) + 1
        prev = self.stops[idx - 1] if idx > 0 else None
        nxt = self.stops[idx] if idx < len(self.stops) else None

        gate_in = self._station_gate(gate_in_id, station_id) if gate_in_id is not None else None
        gate_out = self._station_gate(gate_out_id, station_id) if gate_out_id is not None else None
        if prev is not None and gate_in is None:
            raise StructuralError("An entrance gate is needed when the stop has a predecessor.")
        if nxt is not None and gate_out is None:
            raise StructuralError("An exit gate is needed when the stop has a successor.")
        if gate_in is not None and not gate_in.is_entrance:
            raise StructuralError(f"Gate '{gate_in.letter}' is not an entrance.")
        if gate_out is not None and not gate_out.is_exit:
            raise StructuralError(f"Gate '{gate_out.letter}' is not an exit.")

        seg_in = self._find_segment(prev, gate_in.id) if prev is not None else None
        seg_out = self._find_segment_to(gate_out.id, nxt) if nxt is not None else None

        warnings: list[ConsistencyWarning] = []
        stop = Stop(
            id=self._new_stop_id(),
            job_id=self.job.id,
            station_id=station_id,
            arrival=0,
            departure=0,
            in_gate_id=gate_in.id if (gate_in is not None and prev is not None) else None,
            out_gate_id=gate_out.id if (gate_out is not None and nxt is not None) else None,
        )

        if prev is not None:
            warnings += self._link(prev, seg_in, stop)
        if nxt is not None:
            stop.next_segment = seg_out
        stop.track_id = self._pick_track(stop, station)
        if nxt is not None:
            warnings += self._link(stop, seg_out, nxt, refresh_next_track=True)

        self.stops.insert(idx, stop)

        # Times
        dwell = self.settings.stop_minutes_for(self.job.category.name) * 60
        # The first stop of an empty job is timed later with set_departure()
        if prev is None and nxt is not None:
            stop.departure = nxt.arrival - self.leg_seconds(idx)
            stop.arrival = stop.departure
        elif prev is not None:
            stop.arrival = prev.departure + self.leg_seconds(idx - 1)
            if nxt is None:
                stop.departure = stop.arrival
            elif dwell == 0 and self.settings.auto_insert_transit:
                stop.transit = True
                stop.departure = stop.arrival
            else:
                stop.departure = stop.arrival + dwell
            if nxt is not None:
                self._shift_from(idx + 1, stop.departure + self.leg_seconds(idx) - nxt.arrival)

        for s in self.stops[max(idx - 1, 0): idx + 2]:
            s.state = StopState.PENDING
        logger.info(
            "%s: inserted stop %s at %s (position %d).", self.job.name, stop.id, station.name, idx
        )
        return stop, warnings

    def remove_stop(self, stop: Stop) -> list[ConsistencyWarning]:
        """Remove a stop, joining its neighbours directly. Keeps at least 2 stops."""
        if len(self.stops) <= 2:
            raise StructuralError(f"{self.job.name} must keep at least 2 stops.")
        idx = self.job.index_of(stop.id)
        warnings: list[ConsistencyWarning] = []

        if idx == 0:
            first = self.stops[1]
            first.in_gate_id = first.in_gate_track = None
            first.transit = False
            first.arrival = first.departure
        elif idx == len(self.stops) - 1:
            last = self.stops[idx - 1]
            last.out_gate_id = last.out_gate_track = None
            last.next_segment = None
            last.transit = False
            last.departure = last.arrival
        else:
            prev, nxt = self.stops[idx - 1], self.stops[idx + 1]
            segment = self._segment_between_stops(prev, nxt)
            if segment is None:
                raise StructuralError(
                    f"No segment joins {self.graph.stations[prev.station_id].name} and "
                    f"{self.graph.stations[nxt.station_id].name}."
                )
            warnings += self._link(prev, segment, nxt, refresh_next_track=True)

        del self.stops[idx]
        if 0 < idx < len(self.stops):
            prev, nxt = self.stops[idx - 1], self.stops[idx]
            self._shift_from(idx, prev.departure + self.leg_seconds(idx - 1) - nxt.arrival)
        for s in self.stops[max(idx - 1, 0): idx + 1]:
            s.state = StopState.PENDING
        return warnings

    def set_out_gate_track(self, stop: Stop, gate_track: int) -> list[ConsistencyWarning]:
        """Choose the gate track a stop leaves on; falls back to a connected one."""
        idx = self.job.index_of(stop.id)
        if stop.next_segment is None or idx == len(self.stops) - 1:
            raise StructuralError(f"Stop {stop.id} has no outgoing segment.")
        stop.out_gate_track = gate_track
        return self._link(stop, stop.next_segment, self.stops[idx + 1], refresh_next_track=True)

    def couple(self, stop: Stop, rs_id: int) -> CouplingOperation:
        return self._add_coupling(stop, rs_id, CouplingDirection.COUPLE)

    def uncouple(self, stop: Stop, rs_id: int) -> CouplingOperation:
        return self._add_coupling(stop, rs_id, CouplingDirection.UNCOUPLE)

    def _add_coupling(self, stop: Stop, rs_id: int, direction: CouplingDirection) -> CouplingOperation:
        self.job.index_of(stop.id)
        if self.pieces and rs_id not in self.pieces:
            raise StructuralError(f"Rollingstock {rs_id} does not exist.")
        op = CouplingOperation(rs_id=rs_id, job_id=self.job.id, stop_id=stop.id, direction=direction)
        # One operation per piece per stop: a new choice replaces the old one
        stop.couplings = [c for c in stop.couplings if c.rs_id != rs_id] + [op]
        return op

    def remove_coupling(self, stop: Stop, rs_id: int) -> None:
        stop.couplings = [c for c in stop.couplings if c.rs_id != rs_id]

    # ------------------------------------------------------------------
    # Helpers for path edits
    # ------------------------------------------------------------------

    def _station_gate(self, gate_id: int, station_id: int):
        gate = self.graph.gate(gate_id)
        if gate.station_id != station_id:
            raise StructuralError(f"Gate '{gate.letter}' does not belong to station {station_id}.")
        return gate

    def _find_segment(self, prev: Stop, gate_in_id: int) -> SegmentRef:
        """Segment from prev's station to gate_in, preferring prev's current out gate."""
        candidates = [
            ref for ref in self.graph.segments_from_station(prev.station_id)
            if ref.to_gate_id == gate_in_id
        ]
        candidates.sort(key=lambda ref: ref.from_gate_id != prev.out_gate_id)
        candidates = [ref for ref in candidates if self.graph.gates[ref.from_gate_id].is_exit]
        if not candidates:
            raise StructuralError(
                f"No segment leads from {self.graph.stations[prev.station_id].name} "
                f"to gate '{self.graph.gates[gate_in_id].letter}'."
            )
        return candidates[0]

    def _find_segment_to(self, gate_out_id: int, nxt: Stop) -> SegmentRef:
        """Segment from gate_out to nxt's station, preferring nxt's current in gate."""
        station_id = self.graph.gates[gate_out_id].station_id
        candidates = [
            ref for ref in self.graph.segments_from_station(station_id)
            if ref.from_gate_id == gate_out_id
            and self.graph.gates[ref.to_gate_id].station_id == nxt.station_id
            and self.graph.gates[ref.to_gate_id].is_entrance
        ]
        candidates.sort(key=lambda ref: ref.to_gate_id != nxt.in_gate_id)
        if not candidates:
            raise StructuralError(
                f"No segment leads from gate '{self.graph.gates[gate_out_id].letter}' "
                f"to {self.graph.stations[nxt.station_id].name}."
            )
        return candidates[0]

    def _segment_between_stops(self, prev: Stop, nxt: Stop) -> SegmentRef | None:
        candidates = [
            ref for ref in self.graph.segments_from_station(prev.station_id)
            if self.graph.gates[ref.to_gate_id].station_id == nxt.station_id
            and self.graph.gates[ref.from_gate_id].is_exit
            and self.graph.gates[ref.to_gate_id].is_entrance
        ]
        candidates.sort(key=lambda ref: (ref.from_gate_id != prev.out_gate_id,
                                         ref.to_gate_id != nxt.in_gate_id))
        return candidates[0] if candidates else None

    def _link(
        self, stop: Stop, segment: SegmentRef, nxt: Stop, refresh_next_track: bool = False
    ) -> list[ConsistencyWarning]:
        """
        Point stop at segment and settle the gate tracks on both ends.
        The departure gate track falls back to a connected one if needed.
        """
        # A gate track chosen for another gate means nothing here
        requested = stop.out_gate_track if stop.out_gate_id == segment.from_gate_id else None
        stop.next_segment = segment
        stop.out_gate_id = segment.from_gate_id
        if requested is None and stop.track_id is not None:
            requested = self._gate_track_for(stop.track_id, segment.from_gate_id)
        gate_track, warning = self.graph.resolve_out_gate_track(segment, requested)
        stop.out_gate_track = gate_track

        nxt.in_gate_id = segment.to_gate_id
        arrival_track = segment.arrival_gate_track(gate_track)
        if arrival_track is None:
            arrival_track = min(gate_track, self.graph.gates[segment.to_gate_id].out_track_count)
        nxt.in_gate_track = arrival_track
        if refresh_next_track and (
            nxt.track_id is None
            or self.graph.track_connection(nxt.track_id, nxt.in_gate_id, arrival_track) is None
        ):
            nxt.track_id = self._pick_track(nxt, self.graph.stations[nxt.station_id])

        if warning is None:
            return []
        return [warning.model_copy(update={"job_id": self.job.id, "stop_id": stop.id})]

    def _gate_track_for(self, track_id: int, gate_id: int) -> int | None:
        tracks = sorted(
            c.gate_track for c in self.graph.connections.values()
            if c.track_id == track_id and c.gate_id == gate_id
        )
        return tracks[0] if tracks else None

    def _pick_track(self, stop: Stop, station) -> int:
        """Platform fed by the arrival gate track, else one reaching the exit gate."""
        if stop.in_gate_id is not None and stop.in_gate_track is not None:
            track = self.graph.resolve_track_for_gate(stop.in_gate_id, stop.in_gate_track)
            if track is not None:
                return track.id
        if stop.out_gate_id is not None:
            gate = self.graph.gates[stop.out_gate_id]
            for gate_track in range(1, gate.out_track_count + 1):
                track = self.graph.resolve_track_for_gate(gate.id, gate_track)
                if track is not None:
                    return track.id
        return station.tracks[0].id

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_structure(self) -> None:
        """Raise StructuralError on any broken reference or too few stops."""
        if len(self.stops) < 2:
            raise StructuralError(f"{self.job.name} must have at least 2 stops.")
        graph = self.graph
        for stop in self.stops:
            graph.station(stop.station_id)
            for gate_id in (stop.in_gate_id, stop.out_gate_id):
                if gate_id is not None and graph.gate(gate_id).station_id != stop.station_id:
                    raise StructuralError(
                        f"Stop {stop.id}: gate {gate_id} belongs to another station."
                    )
            if stop.track_id is not None and graph.track(stop.track_id).station_id != stop.station_id:
                raise StructuralError(f"Stop {stop.id}: track {stop.track_id} belongs to another station.")
            if stop.next_segment is not None:
                graph.segment(stop.next_segment.id)
        for stop in self.stops[:-1]:
            if stop.next_segment is None:
                raise StructuralError(f"Stop {stop.id} has no segment to the next stop.")

    def validate(self) -> list[ConsistencyWarning]:
        """Settle every stop to VALID or INVALID; return a warning per invalid stop."""
        self.check_structure()
        warnings: list[ConsistencyWarning] = []
        for idx, stop in enumerate(self.stops):
            reason = self._stop_problem(idx)
            if reason is None:
                stop.mark_valid()
                continue
            stop.mark_invalid(reason)
            warnings.append(ConsistencyWarning(
                code=WarningCode.STOP_INVALID,
                message=f"{self.job.name}, stop {stop.id}: {reason}",
                job_id=self.job.id,
                stop_id=stop.id,
            ))
        return warnings

    def can_fast_save(self) -> bool:
        return all(stop.state == StopState.VALID for stop in self.stops)

    def _stop_problem(self, idx: int) -> str | None:
        graph = self.graph
        stop = self.stops[idx]
        kind = self.job.stop_type(idx)
        station = graph.stations[stop.station_id]

        if stop.departure < stop.arrival:
            return "departure before arrival"
        if kind == StopType.TRANSIT and stop.arrival != stop.departure:
            return "transit stop with a dwell time"
        if kind in (StopType.FIRST, StopType.LAST) and station.type == StationType.SIMPLE_STOP:
            return "a job cannot start or end at a simple stop"
        if stop.track_id is None:
            return "no station track assigned"
        track = graph.tracks[stop.track_id]
        if track.through and kind not in (StopType.TRANSIT,):
            return f"stops on through track '{track.name}'"

        if kind == StopType.FIRST:
            if stop.in_gate_id is not None:
                return "first stop has an entrance gate"
        else:
            prev = self.stops[idx - 1]
            if stop.in_gate_id is None or stop.in_gate_track is None:
                return "no entrance gate"
            if not graph.gates[stop.in_gate_id].is_entrance:
                return f"gate '{graph.gates[stop.in_gate_id].letter}' is not an entrance"
            if prev.next_segment.to_gate_id != stop.in_gate_id:
                return "entrance gate does not match the incoming segment"
            if graph.track_connection(stop.track_id, stop.in_gate_id, stop.in_gate_track) is None:
                return f"track '{track.name}' is not reachable from the entrance gate track"
            if stop.arrival < prev.departure:
                return "arrives before the previous stop departs"
            if stop.arrival - prev.departure < self.leg_seconds(idx - 1):
                return "travel time from the previous stop is too short"

        if kind == StopType.LAST:
            if stop.out_gate_id is not None:
                return "last stop has an exit gate"
        else:
            segment = stop.next_segment
            nxt = self.stops[idx + 1]
            if stop.out_gate_id is None or stop.out_gate_track is None:
                return "no exit gate"
            if not graph.gates[stop.out_gate_id].is_exit:
                return f"gate '{graph.gates[stop.out_gate_id].letter}' is not an exit"
            if segment.from_gate_id != stop.out_gate_id:
                return "exit gate does not match the outgoing segment"
            if stop.out_gate_track not in graph.connected_out_gate_tracks(segment):
                return "exit gate track is not connected to the outgoing segment"
            if graph.track_connection(stop.track_id, stop.out_gate_id, stop.out_gate_track) is None:
                return f"track '{track.name}' does not reach the exit gate track"
            expected = segment.arrival_gate_track(stop.out_gate_track)
            if expected is not None and nxt.in_gate_track != expected:
                return "next stop's entrance gate track does not match the segment track"
        return None

    def check_feasibility(self) -> list[FeasibilityError]:
        """
        Legs the train cannot run: only electric traction coupled and either
        the segment or the arrival track is not electrified.
        """
        errors: list[FeasibilityError] = []
        for idx, stop in enumerate(self.stops[:-1]):
            engines = [p for p in job_composition(self.job, idx, self.pieces) if p.is_engine]
            if not engines or not all(p.model.is_electric_only for p in engines):
                continue
            segment = stop.next_segment
            nxt = self.stops[idx + 1]
            if segment is not None and not segment.electrified:
                errors.append(FeasibilityError(
                    f"{self.job.name}: only electric traction on non-electrified "
                    f"segment '{segment.segment.name}'.",
                    job_id=self.job.id, stop_id=stop.id,
                ))
            elif nxt.track_id is not None and not self.graph.tracks[nxt.track_id].electrified:
                errors.append(FeasibilityError(
                    f"{self.job.name}: only electric traction arriving on "
                    f"non-electrified track '{self.graph.tracks[nxt.track_id].name}'.",
                    job_id=self.job.id, stop_id=nxt.id,
                ))
        return errors

    def validate_for_save(self) -> list[ConsistencyWarning]:
        """Raise on structural or feasibility errors; otherwise return warnings."""
        self.check_structure()
        errors = self.check_feasibility()
        if errors:
            for err in errors:
                logger.error("Feasibility: %s", err)
            raise errors[0]
        return self.validate()

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    def is_reversal(self, stop: Stop) -> bool:
        """Train leaves the station track on the same side it came in."""
        if stop.in_gate_id is None or stop.out_gate_id is None:
            return False
        return self.graph.gates[stop.in_gate_id].side == self.graph.gates[stop.out_gate_id].side

    def reverse_path(self, start: int | None = None, new_job_id: int | None = None) -> Job:
        """
        Mirror of this job along the same segments.

        Stops come in reverse order with in/out gates swapped and every
        segment reference mirrored. Travel times and dwells are replayed
        backwards starting at `start` (default: this job's first arrival),
        so reversing twice gives back the original stations, gates and times.
        Couplings are not carried over.
        """
        self.check_structure()
        src = self.stops
        n = len(src)
        t = src[0].arrival if start is None else start
        job_id = self.job.id if new_job_id is None else new_job_id
        out: list[Stop] = []
        for j in range(n):
            i = n - 1 - j
            orig = src[i]
            if j > 0:
                # Leg between original i and i+1, run backwards
                t += src[i + 1].arrival - orig.departure
            dwell = orig.departure - orig.arrival
            feeding = src[i - 1].next_segment if i > 0 else None
            out.append(Stop(
                id=self._new_stop_id(),
                job_id=job_id,
                station_id=orig.station_id,
                arrival=t,
                departure=t + dwell,
                track_id=orig.track_id,
                transit=orig.transit,
                in_gate_id=orig.out_gate_id,
                in_gate_track=orig.out_gate_track,
                out_gate_id=orig.in_gate_id,
                out_gate_track=orig.in_gate_track,
                next_segment=feeding.mirrored() if feeding is not None else None,
            ))
            t += dwell
        return Job(id=job_id, category=self.job.category, stops=out, shift_id=self.job.shift_id)

    def copy_same_path(
        self,
        new_job_id: int,
        offset_seconds: int,
        reverse: bool = False,
        copy_rollingstock: bool = False,
    ) -> Job:
        """
        New job on the same path, shifted by offset_seconds, optionally
        reversed. Rollingstock operations are copied only on a forward copy.
        """
        if reverse:
            start = self.stops[0].arrival + offset_seconds
            job = self.reverse_path(start=start, new_job_id=new_job_id)
            job.shift_id = None
            return job

        stops: list[Stop] = []
        for orig in self.stops:
            stop_id = self._new_stop_id()
            couplings = []
            if copy_rollingstock:
                couplings = [
                    replace(op, job_id=new_job_id, stop_id=stop_id) for op in orig.couplings
                ]
            stops.append(replace(
                orig,
                id=stop_id,
                job_id=new_job_id,
                arrival=orig.arrival + offset_seconds,
                departure=orig.departure + offset_seconds,
                couplings=couplings,
                state=StopState.PENDING,
                invalid_reason=None,
            ))
        return Job(id=new_job_id, category=self.job.category, stops=stops)
