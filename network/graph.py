"""
NetworkGraph: authoritative rail topology and physical-feasibility queries.

Graph structure:
  Nodes : station ids, attributed with {name, short_name, type}
  Edges : one keyed edge per railway Segment between the two stations its
          gates belong to (key = segment id). Stored in a networkx
          MultiGraph because two stations may be joined by several segments.

Gates, tracks and track connections live in id-indexed dicts next to the
graph. Every mutating method checks its invariants first and raises
StructuralError without touching state when one is violated.

Removal of an entity takes the current jobs as an argument: anything a Stop
still references cannot be removed.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from typing import Any, Iterable

import networkx as nx

from errors import ConsistencyWarning, StructuralError, WarningCode
from network.models import (
    EntityKind,
    Gate,
    Line,
    Segment,
    SegmentRef,
    Side,
    Station,
    Track,
    TrackConnection,
)

logger = logging.getLogger(__name__)


class NetworkGraph:
    def __init__(self) -> None:
        self._graph = nx.MultiGraph()
        self.stations: dict[int, Station] = {}
        self.gates: dict[int, Gate] = {}
        self.tracks: dict[int, Track] = {}
        self.connections: dict[int, TrackConnection] = {}
        self.segments: dict[int, Segment] = {}
        self.lines: dict[int, Line] = {}

    @classmethod
    def build(
        cls,
        stations: Iterable[Station],
        connections: Iterable[TrackConnection] = (),
        segments: Iterable[Segment] = (),
        lines: Iterable[Line] = (),
    ) -> "NetworkGraph":
        """Construct a graph from materialized entities, checking every invariant."""
        graph = cls()
        for station in stations:
            graph.add_station(station)
        for conn in connections:
            graph.add_track_connection(conn)
        for segment in segments:
            graph.add_segment(segment)
        for line in lines:
            graph.add_line(line)
        logger.info(
            "Network built: %d stations, %d gates, %d tracks, %d segments, %d lines.",
            len(graph.stations), len(graph.gates), len(graph.tracks),
            len(graph.segments), len(graph.lines),
        )
        return graph

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def station(self, station_id: int) -> Station:
        try:
            return self.stations[station_id]
        except KeyError:
            raise StructuralError(f"Station {station_id} does not exist.") from None

    def gate(self, gate_id: int) -> Gate:
        try:
            return self.gates[gate_id]
        except KeyError:
            raise StructuralError(f"Gate {gate_id} does not exist.") from None

    def track(self, track_id: int) -> Track:
        try:
            return self.tracks[track_id]
        except KeyError:
            raise StructuralError(f"Track {track_id} does not exist.") from None

    def segment(self, segment_id: int) -> Segment:
        try:
            return self.segments[segment_id]
        except KeyError:
            raise StructuralError(f"Segment {segment_id} does not exist.") from None

    def validate_reference(self, kind: EntityKind, entity_id: Any) -> bool:
        """True if entity_id names an existing entity of the given kind."""
        table = {
            EntityKind.STATION: self.stations,
            EntityKind.GATE: self.gates,
            EntityKind.TRACK: self.tracks,
            EntityKind.SEGMENT: self.segments,
            EntityKind.TRACK_CONNECTION: self.connections,
            EntityKind.LINE: self.lines,
        }[EntityKind(kind)]
        return entity_id in table

    def gate_by_letter(self, station_id: int, letter: str) -> Gate | None:
        for gate in self.station(station_id).gates:
            if gate.letter == letter:
                return gate
        return None

    # ------------------------------------------------------------------
    # Stations, gates, tracks
    # ------------------------------------------------------------------

    def add_station(self, station: Station) -> None:
        if station.id in self.stations:
            raise StructuralError(f"Station {station.id} already exists.")
        if not station.name.strip():
            raise StructuralError("Station name cannot be empty.")
        if not station.gates or not station.tracks:
            raise StructuralError(
                f"Station '{station.name}' needs at least one gate and one track."
            )
        self._check_unique_names(station)

        # Register the station shell first so gate/track checks can find it
        gates, tracks = list(station.gates), list(station.tracks)
        station.gates, station.tracks = [], []
        self.stations[station.id] = station
        try:
            for track in tracks:
                self.add_track(track)
            for gate in gates:
                self.add_gate(gate)
        except StructuralError:
            for track in station.tracks:
                self.tracks.pop(track.id, None)
            for gate in station.gates:
                self.gates.pop(gate.id, None)
            del self.stations[station.id]
            station.gates, station.tracks = gates, tracks
            raise

        self._graph.add_node(
            station.id, name=station.name, short_name=station.short_name, type=station.type
        )

    def rename_station(self, station_id: int, name: str, short_name: str | None = None) -> None:
        station = self.station(station_id)
        candidate = Station(
            id=station.id,
            name=name,
            short_name=station.short_name if short_name is None else short_name,
        )
        if not candidate.name.strip():
            raise StructuralError("Station name cannot be empty.")
        self._check_unique_names(candidate)
        station.name = candidate.name
        station.short_name = candidate.short_name
        self._graph.nodes[station_id].update(name=station.name, short_name=station.short_name)

    def _check_unique_names(self, candidate: Station) -> None:
        name = candidate.name.casefold()
        short = candidate.short_name.casefold()
        for other in self.stations.values():
            if other.id == candidate.id:
                continue
            other_names = {other.name.casefold()}
            if other.short_name:
                other_names.add(other.short_name.casefold())
            if name in other_names or (short and short in other_names):
                raise StructuralError(
                    f"Station name '{candidate.name}' or short name "
                    f"'{candidate.short_name}' is already used by '{other.name}'."
                )

    def add_gate(self, gate: Gate) -> None:
        station = self.station(gate.station_id)
        if gate.id in self.gates:
            raise StructuralError(f"Gate {gate.id} already exists.")
        self._check_gate(gate, station)
        self.gates[gate.id] = gate
        station.gates.append(gate)

    def _check_gate(self, gate: Gate, station: Station) -> None:
        if len(gate.letter) != 1 or not gate.letter.isalpha():
            raise StructuralError(f"Gate letter '{gate.letter}' must be a single letter.")
        if any(g.letter == gate.letter and g.id != gate.id for g in station.gates):
            raise StructuralError(
                f"Gate '{gate.letter}' already exists in station '{station.name}'."
            )
        if not (gate.is_entrance or gate.is_exit):
            raise StructuralError(f"Gate '{gate.letter}' must be an entrance, an exit or both.")
        if gate.out_track_count < 1:
            raise StructuralError(f"Gate '{gate.letter}' needs at least one gate track.")
        if gate.default_in_track_id is not None:
            track = self.track(gate.default_in_track_id)
            if track.station_id != station.id:
                raise StructuralError(
                    f"Default platform of gate '{gate.letter}' belongs to another station."
                )

    def add_track(self, track: Track) -> None:
        station = self.station(track.station_id)
        if track.id in self.tracks:
            raise StructuralError(f"Track {track.id} already exists.")
        self._check_track(track, station)
        self.tracks[track.id] = track
        station.tracks.append(track)

    def update_track(self, track: Track) -> None:
        """Replace a track's attributes after validating them."""
        current = self.track(track.id)
        if track.station_id != current.station_id:
            raise StructuralError("A track cannot be moved to another station.")
        self._check_track(track, self.station(track.station_id))
        station = self.stations[track.station_id]
        station.tracks[station.tracks.index(current)] = track
        self.tracks[track.id] = track

    def _check_track(self, track: Track, station: Station) -> None:
        if not track.name.strip():
            raise StructuralError("Track name cannot be empty.")
        if any(t.name == track.name and t.id != track.id for t in station.tracks):
            raise StructuralError(
                f"Track '{track.name}' already exists in station '{station.name}'."
            )
        if track.length_m < 0 or track.max_axles < 0:
            raise StructuralError(f"Track '{track.name}' has a negative length or axle count.")
        for label, value in (
            ("passenger", track.passenger_length_m),
            ("freight", track.freight_length_m),
        ):
            if value < 0 or value > track.length_m:
                raise StructuralError(
                    f"Track '{track.name}': {label} max length {value} m "
                    f"exceeds track length {track.length_m} m."
                )

    def remove_station(self, station_id: int, jobs: Iterable = ()) -> None:
        station = self.station(station_id)
        users = _jobs_using(jobs, lambda s: s.station_id == station_id)
        if users:
            raise StructuralError(f"Station '{station.name}' is used by jobs {users}.")
        gate_ids = {g.id for g in station.gates}
        if any(
            seg.from_gate_id in gate_ids or seg.to_gate_id in gate_ids
            for seg in self.segments.values()
        ):
            raise StructuralError(f"Station '{station.name}' is still linked by segments.")
        for conn_id in [c.id for c in self.connections.values() if c.gate_id in gate_ids]:
            del self.connections[conn_id]
        for gate_id in gate_ids:
            del self.gates[gate_id]
        for track in station.tracks:
            del self.tracks[track.id]
        del self.stations[station_id]
        self._graph.remove_node(station_id)

    def remove_gate(self, gate_id: int, jobs: Iterable = ()) -> None:
        gate = self.gate(gate_id)
        station = self.stations[gate.station_id]
        if len(station.gates) == 1:
            raise StructuralError(f"Station '{station.name}' must keep at least one gate.")
        users = _jobs_using(jobs, lambda s: gate_id in (s.in_gate_id, s.out_gate_id))
        if users:
            raise StructuralError(f"Gate '{gate.letter}' is used by jobs {users}.")
        if any(gate_id in (s.from_gate_id, s.to_gate_id) for s in self.segments.values()):
            raise StructuralError(f"Gate '{gate.letter}' is still used by a segment.")
        for conn_id in [c.id for c in self.connections.values() if c.gate_id == gate_id]:
            del self.connections[conn_id]
        station.gates.remove(gate)
        del self.gates[gate_id]

    def remove_track(self, track_id: int, jobs: Iterable = ()) -> None:
        track = self.track(track_id)
        station = self.stations[track.station_id]
        if len(station.tracks) == 1:
            raise StructuralError(f"Station '{station.name}' must keep at least one track.")
        users = _jobs_using(jobs, lambda s: s.track_id == track_id)
        if users:
            raise StructuralError(f"Track '{track.name}' is used by jobs {users}.")
        for conn_id in [c.id for c in self.connections.values() if c.track_id == track_id]:
            del self.connections[conn_id]
        for gate in station.gates:
            if gate.default_in_track_id == track_id:
                gate.default_in_track_id = None
        station.tracks.remove(track)
        del self.tracks[track_id]

    # ------------------------------------------------------------------
    # Track connections
    # ------------------------------------------------------------------

    def add_track_connection(self, conn: TrackConnection) -> None:
        if conn.id in self.connections:
            raise StructuralError(f"Track connection {conn.id} already exists.")
        self._check_track_connection(conn)
        self.connections[conn.id] = conn

    def _check_track_connection(self, conn: TrackConnection) -> None:
        track = self.track(conn.track_id)
        gate = self.gate(conn.gate_id)
        if track.station_id != gate.station_id:
            raise StructuralError("Track and gate belong to different stations.")
        if not 1 <= conn.gate_track <= gate.out_track_count:
            raise StructuralError(
                f"Gate track {conn.gate_track} out of range 1..{gate.out_track_count} "
                f"for gate '{gate.letter}'."
            )
        for other in self.connections.values():
            if other.id == conn.id:
                continue
            if (
                other.track_id == conn.track_id
                and other.track_side == conn.track_side
                and other.gate_id == conn.gate_id
            ):
                raise StructuralError(
                    f"Track '{track.name}' side {conn.track_side.name} is already "
                    f"connected to gate '{gate.letter}'."
                )

    def remove_track_connection(self, conn_id: int, jobs: Iterable = ()) -> None:
        conn = self.connections.get(conn_id)
        if conn is None:
            raise StructuralError(f"Track connection {conn_id} does not exist.")

        def uses(stop) -> bool:
            return stop.track_id == conn.track_id and (
                (stop.in_gate_id, stop.in_gate_track) == (conn.gate_id, conn.gate_track)
                or (stop.out_gate_id, stop.out_gate_track) == (conn.gate_id, conn.gate_track)
            )

        users = _jobs_using(jobs, uses)
        if users:
            raise StructuralError(f"Track connection {conn_id} is used by jobs {users}.")
        del self.connections[conn_id]

    def add_track_to_all_gates_on_side(
        self, track_id: int, side: Side, preferred_gate_track: int = 1
    ) -> list[TrackConnection]:
        """
        Connect a track to every gate of its station on the given side.

        A preferred gate track beyond a gate's count is clamped to that gate's
        highest track. Gates already connected to this track side are skipped.
        """
        track = self.track(track_id)
        preferred_gate_track = max(preferred_gate_track, 1)
        added: list[TrackConnection] = []
        for gate in self.stations[track.station_id].gates:
            if gate.side != side:
                continue
            conn = TrackConnection(
                id=self._next_connection_id(),
                track_id=track_id,
                track_side=side,
                gate_id=gate.id,
                gate_track=min(preferred_gate_track, gate.out_track_count),
            )
            try:
                self.add_track_connection(conn)
            except StructuralError:
                logger.debug("Connection track=%s gate=%s already present.", track_id, gate.id)
                continue
            added.append(conn)
        return added

    def add_gate_to_all_tracks(self, gate_id: int, gate_track: int = 1) -> list[TrackConnection]:
        """Connect one gate track to every track of the gate's station."""
        gate = self.gate(gate_id)
        if not 1 <= gate_track <= gate.out_track_count:
            raise StructuralError(
                f"Gate track {gate_track} out of range 1..{gate.out_track_count}."
            )
        added: list[TrackConnection] = []
        for track in self.stations[gate.station_id].tracks:
            conn = TrackConnection(
                id=self._next_connection_id(),
                track_id=track.id,
                track_side=gate.side,
                gate_id=gate_id,
                gate_track=gate_track,
            )
            try:
                self.add_track_connection(conn)
            except StructuralError:
                logger.debug("Connection track=%s gate=%s already present.", track.id, gate_id)
                continue
            added.append(conn)
        return added

    def _next_connection_id(self) -> int:
        return max(self.connections, default=0) + 1

    def track_connection(self, track_id: int, gate_id: int, gate_track: int) -> TrackConnection | None:
        for conn in self.connections.values():
            if (conn.track_id, conn.gate_id, conn.gate_track) == (track_id, gate_id, gate_track):
                return conn
        return None

    def resolve_track_for_gate(self, gate_id: int, gate_track: int) -> Track | None:
        """
        Station track fed by a gate's numbered gate track.

        Prefers the gate's default platform when it is connected to that gate
        track, otherwise the first connected track in station order.
        Returns None when nothing is connected.
        """
        gate = self.gate(gate_id)
        connected = {
            c.track_id
            for c in self.connections.values()
            if c.gate_id == gate_id and c.gate_track == gate_track
        }
        if not connected:
            return None
        if gate.default_in_track_id in connected:
            return self.tracks[gate.default_in_track_id]
        for track in self.stations[gate.station_id].tracks:
            if track.id in connected:
                return track
        return None

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    def add_segment(self, segment: Segment) -> None:
        if segment.id in self.segments:
            raise StructuralError(f"Segment {segment.id} already exists.")
        self._check_segment(segment)
        self.segments[segment.id] = segment
        self._add_segment_edge(segment)

    def _add_segment_edge(self, segment: Segment) -> None:
        self._graph.add_edge(
            self.gates[segment.from_gate_id].station_id,
            self.gates[segment.to_gate_id].station_id,
            key=segment.id,
            distance_km=segment.distance_km,
            max_speed_kmh=segment.max_speed_kmh,
            electrified=segment.electrified,
            weight=segment.distance_km,
        )

    def _check_segment(self, segment: Segment) -> None:
        from_gate = self.gate(segment.from_gate_id)
        to_gate = self.gate(segment.to_gate_id)
        if from_gate.station_id == to_gate.station_id:
            raise StructuralError(f"Segment '{segment.name}' must join two different stations.")
        if segment.distance_km <= 0:
            raise StructuralError(f"Segment '{segment.name}' distance must be > 0.")
        if segment.max_speed_kmh <= 0:
            raise StructuralError(f"Segment '{segment.name}' max speed must be > 0.")
        for gate, used_at in (
            (from_gate, [c.from_track for c in segment.connections]),
            (to_gate, [c.to_track for c in segment.connections]),
        ):
            if len(set(used_at)) != len(used_at):
                raise StructuralError(
                    f"Segment '{segment.name}' uses a gate track of '{gate.letter}' twice."
                )
            for gate_track in used_at:
                if not 1 <= gate_track <= gate.out_track_count:
                    raise StructuralError(
                        f"Segment '{segment.name}': gate track {gate_track} out of range "
                        f"1..{gate.out_track_count} at gate '{gate.letter}'."
                    )

    def update_segment(self, segment: Segment, jobs: Iterable = ()) -> None:
        """
        Replace a segment's attributes. Moving its gates is refused while a
        job runs on it, since the job's stops would lose their connection.
        """
        current = self.segment(segment.id)
        moved = (segment.from_gate_id, segment.to_gate_id) != (
            current.from_gate_id, current.to_gate_id
        )
        if moved:
            users = _jobs_using(
                jobs, lambda s: s.next_segment is not None and s.next_segment.id == segment.id
            )
            if users:
                raise StructuralError(
                    f"Segment '{current.name}' is used by jobs {users}; its gates cannot change."
                )
        self._check_segment(segment)
        self._graph.remove_edge(
            self.gates[current.from_gate_id].station_id,
            self.gates[current.to_gate_id].station_id,
            key=segment.id,
        )
        # Update in place: jobs hold SegmentRefs to this very object
        for f in fields(Segment):
            setattr(current, f.name, getattr(segment, f.name))
        self._add_segment_edge(current)

    def remove_segment(self, segment_id: int, jobs: Iterable = ()) -> None:
        segment = self.segment(segment_id)
        users = _jobs_using(
            jobs, lambda s: s.next_segment is not None and s.next_segment.id == segment_id
        )
        if users:
            raise StructuralError(f"Segment '{segment.name}' is used by jobs {users}.")
        for line in self.lines.values():
            if any(ls.segment_id == segment_id for ls in line.segments):
                raise StructuralError(f"Segment '{segment.name}' belongs to line '{line.name}'.")
        u = self.gates[segment.from_gate_id].station_id
        v = self.gates[segment.to_gate_id].station_id
        self._graph.remove_edge(u, v, key=segment_id)
        del self.segments[segment_id]

    def segment_between(self, gate_a_id: int, gate_b_id: int) -> SegmentRef | None:
        """
        Segment joining gate A to gate B, oriented A → B.
        The returned reference is reversed when the segment is stored B → A.
        """
        station_a = self.gate(gate_a_id).station_id
        station_b = self.gate(gate_b_id).station_id
        edges = self._graph.get_edge_data(station_a, station_b) or {}
        for segment_id in sorted(edges):
            seg = self.segments[segment_id]
            if (seg.from_gate_id, seg.to_gate_id) == (gate_a_id, gate_b_id):
                return SegmentRef(seg, reversed=False)
            if (seg.from_gate_id, seg.to_gate_id) == (gate_b_id, gate_a_id):
                return SegmentRef(seg, reversed=True)
        return None

    def segments_from_station(self, station_id: int) -> list[SegmentRef]:
        """All segments touching a station, oriented away from it."""
        self.station(station_id)
        refs: list[SegmentRef] = []
        for _, _, segment_id in sorted(self._graph.edges(station_id, keys=True), key=lambda e: e[2]):
            seg = self.segments[segment_id]
            away = self.gates[seg.from_gate_id].station_id == station_id
            refs.append(SegmentRef(seg, reversed=not away))
        return refs

    def neighbour_stations(self, station_id: int) -> set[int]:
        self.station(station_id)
        return set(self._graph.neighbors(station_id))

    def are_connected(self, station_a: int, station_b: int) -> bool:
        """True when some chain of segments joins the two stations."""
        self.station(station_a)
        self.station(station_b)
        return nx.has_path(self._graph, station_a, station_b)

    def connected_out_gate_tracks(self, segment_ref: SegmentRef) -> list[int]:
        """Gate tracks at the departure gate that lead onto the segment."""
        conns = segment_ref.connections()
        if conns:
            return sorted(c.from_track for c in conns)
        gate = self.gates[segment_ref.from_gate_id]
        return list(range(1, gate.out_track_count + 1))

    def resolve_out_gate_track(
        self, segment_ref: SegmentRef, requested: int | None
    ) -> tuple[int, ConsistencyWarning | None]:
        """
        Gate track to leave on for a segment.

        A requested gate track not connected to the segment is replaced by the
        lowest connected one and a warning is returned instead of an error, so
        the schedule stays usable while the inconsistency is reported.
        """
        connected = self.connected_out_gate_tracks(segment_ref)
        if requested in connected:
            return requested, None
        fallback = connected[0]
        if requested is None:
            return fallback, None
        gate = self.gates[segment_ref.from_gate_id]
        warning = ConsistencyWarning(
            code=WarningCode.GATE_TRACK_FALLBACK,
            message=(
                f"Gate track {requested} of gate '{gate.letter}' is not connected to "
                f"segment '{segment_ref.segment.name}'; using gate track {fallback}."
            ),
        )
        logger.warning(warning.message)
        return fallback, warning

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def add_line(self, line: Line) -> None:
        if line.id in self.lines:
            raise StructuralError(f"Line {line.id} already exists.")
        if any(l.name == line.name for l in self.lines.values()):
            raise StructuralError(f"Line name '{line.name}' is already used.")
        for ls in line.segments:
            self.segment(ls.segment_id)
        self.lines[line.id] = line


def _jobs_using(jobs: Iterable, predicate) -> list[int]:
    """Ids of the jobs with at least one stop matching predicate."""
    return sorted({job.id for job in jobs for stop in job.stops if predicate(stop)})
