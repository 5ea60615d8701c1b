"""
Railway lines: display/grouping aggregates over segments.

A line is an ordered list of segments, each possibly run reversed, starting
at a kilometre offset. Lines take no part in conflict detection; they give
the station kilometre positions shown on line graphs, and they have to be
kept in order when a segment is split.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable

from errors import ConsistencyWarning, StructuralError, WarningCode
from network.graph import NetworkGraph
from network.models import Line, LineSegment, Segment, SegmentConnection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinePosition:
    station_id: int
    station_name: str
    km: float
    # Segment leaving this station along the line; None on the last station
    segment_id: int | None = None
    reversed: bool = False


def line_stations(
    graph: NetworkGraph, line: Line
) -> tuple[list[LinePosition], list[ConsistencyWarning]]:
    """
    Stations along a line with their kilometre position.

    The first station sits at line.start_km; each following station adds the
    distance of the segment before it. Reversed segments swap their ends.
    Non-adjacent consecutive segments are reported, not rejected.
    """
    positions: list[LinePosition] = []
    warnings: list[ConsistencyWarning] = []
    km = line.start_km
    last_station_id: int | None = None

    for ls in line.segments:
        seg = graph.segment(ls.segment_id)
        from_station = graph.gates[seg.from_gate_id].station_id
        to_station = graph.gates[seg.to_gate_id].station_id
        if ls.reversed:
            from_station, to_station = to_station, from_station

        if last_station_id is not None and from_station != last_station_id:
            warning = ConsistencyWarning(
                code=WarningCode.LINE_NOT_ADJACENT,
                message=(
                    f"Line '{line.name}': segment '{seg.name}' does not start where "
                    f"the previous segment ends."
                ),
            )
            logger.warning(warning.message)
            warnings.append(warning)

        positions.append(LinePosition(
            station_id=from_station,
            station_name=graph.stations[from_station].name,
            km=km,
            segment_id=seg.id,
            reversed=ls.reversed,
        ))
        km += seg.distance_km
        last_station_id = to_station

    if last_station_id is not None:
        positions.append(LinePosition(
            station_id=last_station_id,
            station_name=graph.stations[last_station_id].name,
            km=km,
        ))
    return positions, warnings


def split_segment(
    graph: NetworkGraph,
    segment_id: int,
    middle_in_gate_id: int,
    middle_out_gate_id: int,
    first_distance_km: float,
    new_segment_id: int,
    new_name: str | None = None,
    jobs: Iterable = (),
) -> tuple[Segment, Segment]:
    """
    Split a segment at an intermediate station.

    The original segment is shortened to end at middle_in_gate; a new segment
    runs from middle_out_gate to the original far gate. Every line using the
    original gets the new segment right after it (right before it when the
    line runs the segment reversed). Refused while jobs run on the segment.
    """
    jobs = list(jobs)
    orig = graph.segment(segment_id)
    users = sorted({
        job.id for job in jobs for stop in job.stops
        if stop.next_segment is not None and stop.next_segment.id == segment_id
    })
    if users:
        raise StructuralError(f"Segment '{orig.name}' is used by jobs {users}; cannot split.")

    in_gate = graph.gate(middle_in_gate_id)
    out_gate = graph.gate(middle_out_gate_id)
    if in_gate.station_id != out_gate.station_id:
        raise StructuralError("Split gates must belong to the same station.")
    ends = {graph.gates[orig.from_gate_id].station_id, graph.gates[orig.to_gate_id].station_id}
    if in_gate.station_id in ends:
        raise StructuralError("Split station must differ from the segment ends.")
    if not 0 < first_distance_km < orig.distance_km:
        raise StructuralError(
            f"Split point {first_distance_km} km must lie inside the segment "
            f"(0..{orig.distance_km} km)."
        )

    first = replace(
        orig,
        to_gate_id=middle_in_gate_id,
        distance_km=first_distance_km,
        connections=_clamp_connections(orig.connections, to_count=in_gate.out_track_count),
    )
    second = Segment(
        id=new_segment_id,
        name=new_name or f"{orig.name}/2",
        from_gate_id=middle_out_gate_id,
        to_gate_id=orig.to_gate_id,
        distance_km=orig.distance_km - first_distance_km,
        max_speed_kmh=orig.max_speed_kmh,
        electrified=orig.electrified,
        connections=_clamp_connections(orig.connections, from_count=out_gate.out_track_count),
    )

    graph.add_segment(second)
    try:
        graph.update_segment(first, jobs)
    except StructuralError:
        graph.remove_segment(second.id)
        raise

    for line in graph.lines.values():
        for pos, ls in enumerate(line.segments):
            if ls.segment_id != segment_id:
                continue
            new_ls = LineSegment(segment_id=second.id, reversed=ls.reversed)
            line.segments.insert(pos if ls.reversed else pos + 1, new_ls)
            break

    logger.info(
        "Split segment %s at station %s into %s + %s.",
        segment_id, in_gate.station_id, segment_id, second.id,
    )
    return graph.segments[segment_id], second


def _clamp_connections(
    conns: list[SegmentConnection], from_count: int | None = None, to_count: int | None = None
) -> list[SegmentConnection]:
    """Clamp one end of each connection into a new gate's range, dropping duplicates."""
    out: list[SegmentConnection] = []
    seen_from: set[int] = set()
    seen_to: set[int] = set()
    for conn in conns:
        from_track = min(conn.from_track, from_count) if from_count else conn.from_track
        to_track = min(conn.to_track, to_count) if to_count else conn.to_track
        if from_track in seen_from or to_track in seen_to:
            continue
        seen_from.add(from_track)
        seen_to.add(to_track)
        out.append(SegmentConnection(from_track, to_track))
    return out
