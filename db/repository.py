"""
Storage interface between the session file and the in-memory engine.

  load_snapshot(session)          rows → TimetableSnapshot (graph checked on build)
  save_network / save_rollingstock  whole-table rewrites of static data
  save_job(session, job)          replace one job's stops and couplings
  delete_job(session, job_id)

Writers only ever receive validated in-memory state; they do not re-check
invariants. Callers own the transaction (commit / rollback).
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from db.models import (
    CouplingRecord,
    GateRecord,
    JobRecord,
    LineRecord,
    LineSegmentRecord,
    RsModelRecord,
    RsOwnerRecord,
    RsPieceRecord,
    SegmentConnectionRecord,
    SegmentRecord,
    ShiftRecord,
    StationRecord,
    StopRecord,
    TrackConnectionRecord,
    TrackRecord,
)
from errors import StructuralError
from jobs.models import CouplingDirection, CouplingOperation, Job, JobCategory, Stop
from jobs.shifts import Shift
from jobs.times import hms_to_seconds, seconds_to_hms
from network.graph import NetworkGraph
from network.models import (
    Gate,
    GateType,
    Line,
    LineSegment,
    Segment,
    SegmentConnection,
    SegmentRef,
    Side,
    Station,
    StationType,
    Track,
    TrackConnection,
)
from rollingstock.models import EngineSubType, Owner, RollingStockModel, RollingStockPiece, RsType
from snapshot import TimetableSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Load
# ---------------------------------------------------------------------------

def _load_graph(session: Session) -> NetworkGraph:
    stations = []
    for row in session.query(StationRecord).order_by(StationRecord.id).all():
        stations.append(Station(
            id=row.id,
            name=row.name,
            short_name=row.short_name or "",
            type=StationType(row.type or 0),
            tracks=[
                Track(
                    id=t.id,
                    station_id=row.id,
                    name=t.name,
                    color=t.color,
                    electrified=bool(t.electrified),
                    through=bool(t.through),
                    length_m=t.length_m or 0.0,
                    passenger_length_m=t.passenger_length_m or 0.0,
                    freight_length_m=t.freight_length_m or 0.0,
                    max_axles=t.max_axles or 0,
                )
                for t in row.tracks
            ],
            gates=[
                Gate(
                    id=g.id,
                    station_id=row.id,
                    letter=g.letter,
                    type=GateType(g.type),
                    side=Side(g.side),
                    out_track_count=g.out_track_count,
                    default_in_track_id=g.default_in_track_id,
                )
                for g in row.gates
            ],
        ))

    connections = [
        TrackConnection(
            id=c.id,
            track_id=c.track_id,
            track_side=Side(c.track_side),
            gate_id=c.gate_id,
            gate_track=c.gate_track,
        )
        for c in session.query(TrackConnectionRecord).order_by(TrackConnectionRecord.id).all()
    ]

    segments = [
        Segment(
            id=s.id,
            name=s.name,
            from_gate_id=s.from_gate_id,
            to_gate_id=s.to_gate_id,
            distance_km=s.distance_km,
            max_speed_kmh=s.max_speed_kmh,
            electrified=bool(s.electrified),
            connections=[SegmentConnection(c.from_track, c.to_track) for c in s.connections],
        )
        for s in session.query(SegmentRecord).order_by(SegmentRecord.id).all()
    ]

    lines = [
        Line(
            id=row.id,
            name=row.name,
            start_km=row.start_km or 0.0,
            segments=[LineSegment(ls.segment_id, bool(ls.reversed)) for ls in row.segments],
        )
        for row in session.query(LineRecord).order_by(LineRecord.id).all()
    ]
    return NetworkGraph.build(stations, connections, segments, lines)


def _load_rollingstock(session: Session, snapshot: TimetableSnapshot) -> None:
    for row in session.query(RsModelRecord).all():
        snapshot.models[row.id] = RollingStockModel(
            id=row.id,
            name=row.name,
            suffix=row.suffix or "",
            type=RsType(row.type),
            sub_type=EngineSubType(row.sub_type) if row.sub_type is not None else None,
            max_speed_kmh=row.max_speed_kmh,
            axles=row.axles,
            length_m=row.length_m or 0.0,
        )
    for row in session.query(RsOwnerRecord).all():
        snapshot.owners[row.id] = Owner(id=row.id, name=row.name)
    for row in session.query(RsPieceRecord).all():
        try:
            model = snapshot.models[row.model_id]
        except KeyError:
            raise StructuralError(f"Rollingstock {row.id} refers to missing model {row.model_id}.") from None
        snapshot.pieces[row.id] = RollingStockPiece(
            id=row.id,
            model=model,
            number=row.number,
            owner=snapshot.owners.get(row.owner_id),
        )


def _stop_from_row(row: StopRecord, graph: NetworkGraph) -> Stop:
    segment = None
    if row.next_segment_id is not None:
        segment = SegmentRef(graph.segment(row.next_segment_id), bool(row.next_segment_reversed))
    return Stop(
        id=row.id,
        job_id=row.job_id,
        station_id=row.station_id,
        arrival=hms_to_seconds(row.arrival),
        departure=hms_to_seconds(row.departure),
        track_id=row.track_id,
        transit=bool(row.transit),
        in_gate_id=row.in_gate_id,
        in_gate_track=row.in_gate_track,
        out_gate_id=row.out_gate_id,
        out_gate_track=row.out_gate_track,
        next_segment=segment,
        couplings=[
            CouplingOperation(
                rs_id=c.rs_id,
                job_id=row.job_id,
                stop_id=row.id,
                direction=CouplingDirection(c.operation),
            )
            for c in row.couplings
        ],
    )


def load_snapshot(session: Session) -> TimetableSnapshot:
    """Materialize the whole session file into memory."""
    snapshot = TimetableSnapshot(graph=_load_graph(session))
    _load_rollingstock(session, snapshot)
    for row in session.query(ShiftRecord).all():
        snapshot.shifts[row.id] = Shift(id=row.id, name=row.name)
    for row in session.query(JobRecord).order_by(JobRecord.id).all():
        snapshot.jobs[row.id] = Job(
            id=row.id,
            category=JobCategory(row.category),
            shift_id=row.shift_id,
            stops=[_stop_from_row(s, snapshot.graph) for s in row.stops],
        )
    logger.info(
        "Loaded snapshot: %d jobs, %d rollingstock pieces, %d shifts.",
        len(snapshot.jobs), len(snapshot.pieces), len(snapshot.shifts),
    )
    return snapshot


# ---------------------------------------------------------------------------
# Save
# ---------------------------------------------------------------------------

def save_network(session: Session, graph: NetworkGraph) -> None:
    """Rewrite every network table from the graph."""
    for model in (
        LineSegmentRecord, LineRecord, SegmentConnectionRecord, SegmentRecord,
        TrackConnectionRecord, GateRecord, TrackRecord, StationRecord,
    ):
        session.query(model).delete()
    session.flush()

    for station in graph.stations.values():
        session.add(StationRecord(
            id=station.id, name=station.name, short_name=station.short_name,
            type=int(station.type),
        ))
        for pos, track in enumerate(station.tracks):
            session.add(TrackRecord(
                id=track.id, station_id=station.id, position=pos, name=track.name,
                color=track.color, electrified=track.electrified, through=track.through,
                length_m=track.length_m, passenger_length_m=track.passenger_length_m,
                freight_length_m=track.freight_length_m, max_axles=track.max_axles,
            ))
        for pos, gate in enumerate(station.gates):
            session.add(GateRecord(
                id=gate.id, station_id=station.id, position=pos, letter=gate.letter,
                type=int(gate.type), side=int(gate.side), out_track_count=gate.out_track_count,
                default_in_track_id=gate.default_in_track_id,
            ))
    for conn in graph.connections.values():
        session.add(TrackConnectionRecord(
            id=conn.id, track_id=conn.track_id, track_side=int(conn.track_side),
            gate_id=conn.gate_id, gate_track=conn.gate_track,
        ))
    for seg in graph.segments.values():
        session.add(SegmentRecord(
            id=seg.id, name=seg.name, from_gate_id=seg.from_gate_id, to_gate_id=seg.to_gate_id,
            distance_km=seg.distance_km, max_speed_kmh=seg.max_speed_kmh,
            electrified=seg.electrified,
            connections=[
                SegmentConnectionRecord(position=pos, from_track=c.from_track, to_track=c.to_track)
                for pos, c in enumerate(seg.connections)
            ],
        ))
    for line in graph.lines.values():
        session.add(LineRecord(
            id=line.id, name=line.name, start_km=line.start_km,
            segments=[
                LineSegmentRecord(segment_id=ls.segment_id, position=pos, reversed=ls.reversed)
                for pos, ls in enumerate(line.segments)
            ],
        ))
    session.flush()
    logger.info("Saved network: %d stations, %d segments.", len(graph.stations), len(graph.segments))


def save_rollingstock(session: Session, snapshot: TimetableSnapshot) -> None:
    """Rewrite models, owners, pieces and shifts."""
    for model in (RsPieceRecord, RsOwnerRecord, RsModelRecord, ShiftRecord):
        session.query(model).delete()
    session.flush()
    for m in snapshot.models.values():
        session.add(RsModelRecord(
            id=m.id, name=m.name, suffix=m.suffix, type=int(m.type),
            sub_type=int(m.sub_type) if m.sub_type is not None else None,
            max_speed_kmh=m.max_speed_kmh, axles=m.axles, length_m=m.length_m,
        ))
    for o in snapshot.owners.values():
        session.add(RsOwnerRecord(id=o.id, name=o.name))
    for p in snapshot.pieces.values():
        session.add(RsPieceRecord(
            id=p.id, model_id=p.model.id, number=p.number,
            owner_id=p.owner.id if p.owner else None,
        ))
    for s in snapshot.shifts.values():
        session.add(ShiftRecord(id=s.id, name=s.name))
    session.flush()


def save_job(session: Session, job: Job) -> JobRecord:
    """Write one job, replacing whatever stops and couplings it had."""
    row = session.get(JobRecord, job.id)
    if row is None:
        row = JobRecord(id=job.id)
        session.add(row)
    row.category = int(job.category)
    row.shift_id = job.shift_id
    row.stops.clear()
    session.flush()

    for pos, stop in enumerate(job.stops):
        segment = stop.next_segment
        row.stops.append(StopRecord(
            id=stop.id,
            position=pos,
            station_id=stop.station_id,
            arrival=seconds_to_hms(stop.arrival),
            departure=seconds_to_hms(stop.departure),
            track_id=stop.track_id,
            transit=stop.transit,
            in_gate_id=stop.in_gate_id,
            in_gate_track=stop.in_gate_track,
            out_gate_id=stop.out_gate_id,
            out_gate_track=stop.out_gate_track,
            next_segment_id=segment.id if segment is not None else None,
            next_segment_reversed=segment.reversed if segment is not None else False,
            couplings=[
                CouplingRecord(rs_id=op.rs_id, operation=int(op.direction))
                for op in stop.couplings
            ],
        ))
    session.flush()
    logger.debug("Saved job %s (%d stops).", job.id, len(job.stops))
    return row


def delete_job(session: Session, job_id: int) -> bool:
    """Delete a job with its stops and couplings. False if it was not stored."""
    row = session.get(JobRecord, job_id)
    if row is None:
        return False
    session.delete(row)
    session.flush()
    logger.debug("Deleted job %s.", job_id)
    return True


def save_snapshot(session: Session, snapshot: TimetableSnapshot) -> None:
    """Write a whole snapshot: network, rollingstock, then every job."""
    stored = {job_id for (job_id,) in session.query(JobRecord.id).all()}
    for job_id in stored - set(snapshot.jobs):
        delete_job(session, job_id)
    save_network(session, snapshot.graph)
    save_rollingstock(session, snapshot)
    for job in snapshot.jobs.values():
        save_job(session, job)
