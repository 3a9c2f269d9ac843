from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, JSON, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from cycletrac.db import Base


class Ride(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)

    title = Column(String(255), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True)

    duration = Column(Integer, nullable=True)  # seconds of active riding
    distance = Column(Float, nullable=True)  # km
    avg_speed = Column(Float, nullable=True)  # km/h
    max_speed = Column(Float, nullable=True)  # km/h
    elevation = Column(Integer, nullable=True)  # m
    total_elevation_gain = Column(Integer, nullable=True)  # m
    avg_cadence = Column(Integer, nullable=True)  # rpm
    max_cadence = Column(Integer, nullable=True)  # rpm

    # {points: [{lat, lng, elevation, timestamp, speed}], stats: {...}}
    route_data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
