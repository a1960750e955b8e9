"""Gym class definitions - schedule window, capacity and the seat counter"""
import enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from app.core.database import Base, UTCDateTime, utcnow


class ClassStatus(str, enum.Enum):
    scheduled = "scheduled"
    ongoing = "ongoing"
    completed = "completed"
    cancelled = "cancelled"


class GymClass(Base):
    __tablename__ = "gym_classes"

    id = Column(Integer, primary_key=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    class_type = Column(String(50), nullable=False, default="fitness", index=True)

    # Identity-service user id of the trainer, plus a display snapshot
    instructor_id = Column(String(128), nullable=False, index=True)
    instructor_name = Column(String(255), nullable=False)

    start_at = Column(UTCDateTime, nullable=False)
    end_at = Column(UTCDateTime, nullable=False)
    location = Column(String(255), nullable=True)

    capacity = Column(Integer, nullable=False)
    # Written only by CapacityLedger
    enrolled = Column(Integer, nullable=False, default=0)
    # Compare-and-swap token for the ledger
    version = Column(Integer, nullable=False, default=1)

    status = Column(
        String(20),
        default=ClassStatus.scheduled.value,
        nullable=False,
        index=True,
    )

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    bookings = relationship(
        "Booking", back_populates="gym_class", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_gym_classes_capacity_positive"),
        CheckConstraint("enrolled >= 0", name="ck_gym_classes_enrolled_non_negative"),
        CheckConstraint("enrolled <= capacity", name="ck_gym_classes_enrolled_lte_capacity"),
        CheckConstraint("end_at > start_at", name="ck_gym_classes_window"),
        Index("ix_gym_classes_start_at", "start_at"),
        Index("ix_gym_classes_instructor_start", "instructor_id", "start_at"),
        Index("ix_gym_classes_status_start", "status", "start_at"),
    )

    @property
    def available_spots(self) -> int:
        return max(self.capacity - self.enrolled, 0)

    @property
    def is_full(self) -> bool:
        return self.enrolled >= self.capacity

    def __repr__(self):
        return f"<GymClass(id={self.id}, name={self.name}, start={self.start_at}, enrolled={self.enrolled}/{self.capacity}, status={self.status})>"
