from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
)

from .db import Base


class Axis(Base):
    __tablename__ = "axes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False, index=True)
    departure = Column(String(255))
    arrival = Column(String(255))
    distance_km = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Stop(Base):
    __tablename__ = "stops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)
    axis_id = Column(Integer, ForeignKey("axes.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Personnel(Base):
    __tablename__ = "personnels"
    __table_args__ = (UniqueConstraint("matricule", name="uq_personnels_matricule"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    matricule = Column(String(32), nullable=False)
    last_name = Column(String(120), nullable=False)
    first_name = Column(String(120), nullable=False)
    address = Column(String(255))
    latitude = Column(Float)
    longitude = Column(Float)
    planned = Column(Boolean, nullable=False, default=True)
    gender = Column(String(8))
    birth_date = Column(Date)
    status = Column(String(64))
    job_title = Column(String(120))
    campaign = Column(String(120))
    stop_id = Column(Integer, ForeignKey("stops.id", ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    capacity = Column(Integer, nullable=False, default=0)
    available = Column(Boolean, nullable=False, default=True)
    depot_lat = Column(Float)
    depot_lng = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Assignment(Base):
    __tablename__ = "assignments"
    __table_args__ = (
        UniqueConstraint("vehicle_id", "personnel_id", "assignment_date", name="uq_assignment_vehicle_personnel_day"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    stop_id = Column(Integer, ForeignKey("stops.id", ondelete="CASCADE"), nullable=False)
    personnel_id = Column(Integer, ForeignKey("personnels.id", ondelete="CASCADE"), nullable=False)
    assignment_date = Column(Date, nullable=False)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Planning(Base):
    __tablename__ = "planning"
    __table_args__ = (UniqueConstraint("personnel_id", "day", name="uq_planning_personnel_day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    personnel_id = Column(Integer, ForeignKey("personnels.id", ondelete="CASCADE"), nullable=False)
    day = Column(Date, nullable=False)
    departure_time = Column(Time, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    personnel_id = Column(Integer, ForeignKey("personnels.id", ondelete="SET NULL"))
    origin_label = Column(String(255))
    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    destination_label = Column(String(255))
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    distance_km = Column(Float)
    duration_min = Column(Float)
    path_geojson = Column(Text)
    is_fallback = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TransportCheck(Base):
    """Headcount checked on the transport sheet for one departure shift."""

    __tablename__ = "transport_checks"
    __table_args__ = (UniqueConstraint("day", "shift", name="uq_transport_checks_day_shift"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    day = Column(Date, nullable=False, index=True)
    shift = Column(String(5), nullable=False)
    counted = Column(Integer, nullable=False, default=0)
    gap = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
