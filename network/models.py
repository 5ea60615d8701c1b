"""
In-memory network entities: the static topology jobs run on.

  Station ── Gates (letter, side, N outbound gate tracks, default platform)
          └─ Tracks (platforms / through tracks inside the station)
  TrackConnection : station Track side  ↔  (Gate, gate track number)
  Segment         : (Gate A) ─── distance / speed ─── (Gate B)
                    with the gate-track ↔ gate-track pairs of its physical tracks
  Line            : ordered Segments with a starting kilometre, display only

Gate tracks are numbered 1..out_track_count.

A Segment is stored once, in the direction it was drawn. A job running it
the other way holds a SegmentRef with reversed=True; the reference mirrors
From/To without ever copying the Segment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag


class StationType(IntEnum):
    NORMAL = 0
    SIMPLE_STOP = 1  # trains can stop but cannot start or end here
    JUNCTION = 2     # not a real station, a junction between lines


class Side(IntEnum):
    WEST = 0
    EAST = 1

    def opposite(self) -> "Side":
        return Side.EAST if self is Side.WEST else Side.WEST


class GateType(IntFlag):
    ENTRANCE = 1
    EXIT = 2
    BIDIRECTIONAL = ENTRANCE | EXIT


class EntityKind(str, Enum):
    STATION = "station"
    GATE = "gate"
    TRACK = "track"
    SEGMENT = "segment"
    TRACK_CONNECTION = "track_connection"
    LINE = "line"


@dataclass
class Gate:
    id: int
    station_id: int
    letter: str
    type: GateType = GateType.BIDIRECTIONAL
    side: Side = Side.WEST
    out_track_count: int = 1
    default_in_track_id: int | None = None

    @property
    def is_entrance(self) -> bool:
        return bool(self.type & GateType.ENTRANCE)

    @property
    def is_exit(self) -> bool:
        return bool(self.type & GateType.EXIT)


@dataclass
class Track:
    id: int
    station_id: int
    name: str
    color: str = "#FFFFFF"
    electrified: bool = True
    through: bool = False
    length_m: float = 0.0
    # 0 means the track is not used by that traffic class
    passenger_length_m: float = 0.0
    freight_length_m: float = 0.0
    max_axles: int = 0


@dataclass
class TrackConnection:
    id: int
    track_id: int
    track_side: Side
    gate_id: int
    gate_track: int


@dataclass
class Station:
    id: int
    name: str
    short_name: str = ""
    type: StationType = StationType.NORMAL
    gates: list[Gate] = field(default_factory=list)
    tracks: list[Track] = field(default_factory=list)


@dataclass(frozen=True)
class SegmentConnection:
    """One physical track of a segment: from-gate track → to-gate track."""
    from_track: int
    to_track: int


@dataclass
class Segment:
    id: int
    name: str
    from_gate_id: int
    to_gate_id: int
    distance_km: float
    max_speed_kmh: int
    electrified: bool = False
    connections: list[SegmentConnection] = field(default_factory=list)

    @property
    def is_single_track(self) -> bool:
        return len(self.connections) <= 1


@dataclass(frozen=True)
class SegmentRef:
    """A Segment plus the direction it is travelled in."""
    segment: Segment
    reversed: bool = False

    @property
    def id(self) -> int:
        return self.segment.id

    @property
    def from_gate_id(self) -> int:
        return self.segment.to_gate_id if self.reversed else self.segment.from_gate_id

    @property
    def to_gate_id(self) -> int:
        return self.segment.from_gate_id if self.reversed else self.segment.to_gate_id

    @property
    def distance_km(self) -> float:
        return self.segment.distance_km

    @property
    def max_speed_kmh(self) -> int:
        return self.segment.max_speed_kmh

    @property
    def electrified(self) -> bool:
        return self.segment.electrified

    def mirrored(self) -> "SegmentRef":
        return SegmentRef(self.segment, not self.reversed)

    def connections(self) -> list[SegmentConnection]:
        """Physical tracks as seen in the direction of travel."""
        if not self.reversed:
            return list(self.segment.connections)
        return [SegmentConnection(c.to_track, c.from_track) for c in self.segment.connections]

    def physical_track_index(self, out_gate_track: int) -> int:
        """
        Index of the segment's physical track entered from out_gate_track.
        Single-track segments (or segments without connections) always map to 0.
        """
        for idx, conn in enumerate(self.connections()):
            if conn.from_track == out_gate_track:
                return idx
        return 0

    def arrival_gate_track(self, out_gate_track: int) -> int | None:
        """Gate track reached at the far end when leaving on out_gate_track."""
        for conn in self.connections():
            if conn.from_track == out_gate_track:
                return conn.to_track
        return None


@dataclass
class LineSegment:
    segment_id: int
    reversed: bool = False


@dataclass
class Line:
    id: int
    name: str
    start_km: float = 0.0
    segments: list[LineSegment] = field(default_factory=list)
