"""
Shared builders for a small three-station line:

    Alpha (1) ──seg 1: 10 km, 100 km/h, electrified──▶ Bravo (2)
              ──seg 2: 20 km, 120 km/h, diesel only──▶ Charlie (3)

Every station has gate A (west) and gate B (east), one gate track each,
and two platforms "1" and "2" connected to both gates. Segments run from
the east gate of one station to the west gate of the next.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.models import Base
from jobs.models import Job, JobCategory, Stop
from jobs.times import hms_to_seconds
from network.graph import NetworkGraph
from network.models import (
    Gate, Line, LineSegment, Segment, SegmentConnection, Side, Station, Track,
)
from rollingstock.models import EngineSubType, RollingStockModel, RollingStockPiece, RsType

ALPHA, BRAVO, CHARLIE = 1, 2, 3


def make_station(station_id: int, name: str) -> Station:
    base = station_id * 10
    return Station(
        id=station_id,
        name=name,
        short_name=name[:3].upper(),
        gates=[
            Gate(id=base + 1, station_id=station_id, letter="A", side=Side.WEST),
            Gate(id=base + 2, station_id=station_id, letter="B", side=Side.EAST),
        ],
        tracks=[
            Track(id=station_id * 100 + 1, station_id=station_id, name="1", length_m=400),
            Track(id=station_id * 100 + 2, station_id=station_id, name="2", length_m=400),
        ],
    )


def make_network() -> NetworkGraph:
    graph = NetworkGraph.build(
        stations=[
            make_station(ALPHA, "Alpha"),
            make_station(BRAVO, "Bravo"),
            make_station(CHARLIE, "Charlie"),
        ],
        segments=[
            Segment(id=1, name="Alpha-Bravo", from_gate_id=12, to_gate_id=21,
                    distance_km=10, max_speed_kmh=100, electrified=True,
                    connections=[SegmentConnection(1, 1)]),
            Segment(id=2, name="Bravo-Charlie", from_gate_id=22, to_gate_id=31,
                    distance_km=20, max_speed_kmh=120, electrified=False,
                    connections=[SegmentConnection(1, 1)]),
        ],
        lines=[Line(id=1, name="Main", start_km=0.0,
                    segments=[LineSegment(1), LineSegment(2)])],
    )
    for gate_id in sorted(graph.gates):
        graph.add_gate_to_all_tracks(gate_id, 1)
    return graph


def make_job(
    graph: NetworkGraph,
    job_id: int,
    calls: list[tuple[int, str, str]],
    category: JobCategory = JobCategory.REGIONAL,
) -> Job:
    """
    Job calling at (station id, arrival "HH:MM", departure "HH:MM") in order,
    along whatever segment joins consecutive stations, on gate track 1.
    Stop ids are job_id * 100 + position.
    """
    stops = []
    for idx, (station_id, arr, dep) in enumerate(calls):
        stops.append(Stop(
            id=job_id * 100 + idx,
            job_id=job_id,
            station_id=station_id,
            arrival=hms_to_seconds(arr),
            departure=hms_to_seconds(dep),
        ))
    for prev, nxt in zip(stops, stops[1:]):
        ref = next(
            r for r in graph.segments_from_station(prev.station_id)
            if graph.gates[r.to_gate_id].station_id == nxt.station_id
        )
        prev.next_segment = ref
        prev.out_gate_id, prev.out_gate_track = ref.from_gate_id, 1
        nxt.in_gate_id, nxt.in_gate_track = ref.to_gate_id, 1
    for stop in stops:
        if stop.in_gate_id is not None:
            stop.track_id = graph.resolve_track_for_gate(stop.in_gate_id, 1).id
        else:
            stop.track_id = graph.resolve_track_for_gate(stop.out_gate_id, 1).id
    return Job(id=job_id, category=category, stops=stops)


def make_model(
    model_id: int, name: str, rs_type: RsType = RsType.COACH,
    sub_type: EngineSubType | None = None, max_speed_kmh: int = 160,
) -> RollingStockModel:
    return RollingStockModel(
        id=model_id, name=name, type=rs_type, sub_type=sub_type, max_speed_kmh=max_speed_kmh,
    )


@pytest.fixture
def graph():
    return make_network()


@pytest.fixture
def electric_engine():
    model = make_model(1, "E464", RsType.ENGINE, EngineSubType.ELECTRIC, max_speed_kmh=160)
    return RollingStockPiece(id=1, model=model, number=23)


@pytest.fixture
def diesel_engine():
    model = make_model(2, "D445", RsType.ENGINE, EngineSubType.DIESEL, max_speed_kmh=80)
    return RollingStockPiece(id=2, model=model, number=7)


@pytest.fixture
def coach():
    return RollingStockPiece(id=3, model=make_model(3, "Vivalto"), number=101)


@pytest.fixture
def db():
    """In-memory SQLite DB with schema, yielding a session."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()
