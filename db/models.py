"""
SQLAlchemy ORM models for a timetable session file.

Stop times (arrival, departure) are stored as HH:MM:SS strings, the way the
session file has always kept them. Application code converts to integer
seconds past midnight on load (see jobs/times.py).

Ordered children (station gates and tracks, segment connections, line
segments, job stops) carry a `position` column; list order in memory follows it.
"""

from sqlalchemy import (
    Boolean, Column, Float, ForeignKey, Integer, String, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

class StationRecord(Base):
    __tablename__ = "stations"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    short_name = Column(String, default="")
    type = Column(Integer, default=0)  # StationType

    gates = relationship(
        "GateRecord", back_populates="station", cascade="all, delete-orphan",
        order_by="GateRecord.position",
    )
    tracks = relationship(
        "TrackRecord", back_populates="station", cascade="all, delete-orphan",
        order_by="TrackRecord.position",
    )


class GateRecord(Base):
    __tablename__ = "station_gates"
    __table_args__ = (UniqueConstraint("station_id", "letter"),)

    id = Column(Integer, primary_key=True)
    station_id = Column(Integer, ForeignKey("stations.id"), index=True, nullable=False)
    position = Column(Integer, default=0)
    letter = Column(String(1), nullable=False)
    type = Column(Integer, default=3)   # GateType flags: 1 entrance, 2 exit
    side = Column(Integer, default=0)   # 0 west, 1 east
    out_track_count = Column(Integer, default=1)
    default_in_track_id = Column(Integer, ForeignKey("station_tracks.id"), nullable=True)

    station = relationship("StationRecord", back_populates="gates")


class TrackRecord(Base):
    __tablename__ = "station_tracks"

    id = Column(Integer, primary_key=True)
    station_id = Column(Integer, ForeignKey("stations.id"), index=True, nullable=False)
    position = Column(Integer, default=0)
    name = Column(String, nullable=False)
    color = Column(String, default="#FFFFFF")
    electrified = Column(Boolean, default=True)
    through = Column(Boolean, default=False)
    length_m = Column(Float, default=0.0)
    passenger_length_m = Column(Float, default=0.0)
    freight_length_m = Column(Float, default=0.0)
    max_axles = Column(Integer, default=0)

    station = relationship("StationRecord", back_populates="tracks")


class TrackConnectionRecord(Base):
    __tablename__ = "station_gate_connections"

    id = Column(Integer, primary_key=True)
    track_id = Column(Integer, ForeignKey("station_tracks.id"), index=True, nullable=False)
    track_side = Column(Integer, nullable=False)
    gate_id = Column(Integer, ForeignKey("station_gates.id"), index=True, nullable=False)
    gate_track = Column(Integer, nullable=False)  # 1..out_track_count


class SegmentRecord(Base):
    __tablename__ = "railway_segments"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    from_gate_id = Column(Integer, ForeignKey("station_gates.id"), nullable=False)
    to_gate_id = Column(Integer, ForeignKey("station_gates.id"), nullable=False)
    distance_km = Column(Float, nullable=False)
    max_speed_kmh = Column(Integer, nullable=False)
    electrified = Column(Boolean, default=False)

    connections = relationship(
        "SegmentConnectionRecord", back_populates="segment", cascade="all, delete-orphan",
        order_by="SegmentConnectionRecord.position",
    )


class SegmentConnectionRecord(Base):
    __tablename__ = "railway_connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    segment_id = Column(Integer, ForeignKey("railway_segments.id"), index=True, nullable=False)
    position = Column(Integer, default=0)
    from_track = Column(Integer, nullable=False)
    to_track = Column(Integer, nullable=False)

    segment = relationship("SegmentRecord", back_populates="connections")


class LineRecord(Base):
    __tablename__ = "lines"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    start_km = Column(Float, default=0.0)

    segments = relationship(
        "LineSegmentRecord", back_populates="line", cascade="all, delete-orphan",
        order_by="LineSegmentRecord.position",
    )


class LineSegmentRecord(Base):
    __tablename__ = "line_segments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    line_id = Column(Integer, ForeignKey("lines.id"), index=True, nullable=False)
    segment_id = Column(Integer, ForeignKey("railway_segments.id"), nullable=False)
    position = Column(Integer, default=0)
    reversed = Column(Boolean, default=False)

    line = relationship("LineRecord", back_populates="segments")


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class ShiftRecord(Base):
    __tablename__ = "jobshifts"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)


class JobRecord(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True)
    category = Column(Integer, default=0)  # JobCategory
    shift_id = Column(Integer, ForeignKey("jobshifts.id"), nullable=True, index=True)

    stops = relationship(
        "StopRecord", back_populates="job", cascade="all, delete-orphan",
        order_by="StopRecord.position",
    )


class StopRecord(Base):
    __tablename__ = "stops"

    id = Column(Integer, primary_key=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), index=True, nullable=False)
    position = Column(Integer, nullable=False)
    station_id = Column(Integer, ForeignKey("stations.id"), index=True, nullable=False)
    arrival = Column(String, nullable=False)    # HH:MM:SS
    departure = Column(String, nullable=False)  # HH:MM:SS
    track_id = Column(Integer, ForeignKey("station_tracks.id"), nullable=True)
    transit = Column(Boolean, default=False)
    in_gate_id = Column(Integer, ForeignKey("station_gates.id"), nullable=True)
    in_gate_track = Column(Integer, nullable=True)
    out_gate_id = Column(Integer, ForeignKey("station_gates.id"), nullable=True)
    out_gate_track = Column(Integer, nullable=True)
    next_segment_id = Column(Integer, ForeignKey("railway_segments.id"), nullable=True)
    next_segment_reversed = Column(Boolean, default=False)

    job = relationship("JobRecord", back_populates="stops")
    couplings = relationship(
        "CouplingRecord", back_populates="stop", cascade="all, delete-orphan",
        order_by="CouplingRecord.id",
    )


class CouplingRecord(Base):
    __tablename__ = "coupling"
    __table_args__ = (UniqueConstraint("stop_id", "rs_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    stop_id = Column(Integer, ForeignKey("stops.id"), index=True, nullable=False)
    rs_id = Column(Integer, ForeignKey("rs_list.id"), index=True, nullable=False)
    operation = Column(Integer, nullable=False)  # 0 uncouple, 1 couple

    stop = relationship("StopRecord", back_populates="couplings")


# ---------------------------------------------------------------------------
# Rollingstock
# ---------------------------------------------------------------------------

class RsModelRecord(Base):
    __tablename__ = "rs_models"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    suffix = Column(String, default="")
    type = Column(Integer, default=1)       # RsType
    sub_type = Column(Integer, nullable=True)  # EngineSubType, engines only
    max_speed_kmh = Column(Integer, default=120)
    axles = Column(Integer, default=4)
    length_m = Column(Float, default=0.0)


class RsOwnerRecord(Base):
    __tablename__ = "rs_owners"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)


class RsPieceRecord(Base):
    __tablename__ = "rs_list"
    __table_args__ = (UniqueConstraint("model_id", "number"),)

    id = Column(Integer, primary_key=True)
    model_id = Column(Integer, ForeignKey("rs_models.id"), index=True, nullable=False)
    number = Column(Integer, nullable=False)
    owner_id = Column(Integer, ForeignKey("rs_owners.id"), nullable=True)
