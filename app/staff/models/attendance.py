"""Attendance audit trail - one immutable row per member per roll-call"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Date,
    ForeignKey,
    Index,
    UniqueConstraint,
    event,
)
from app.core.database import Base, UTCDateTime, utcnow
from app.core.exceptions import BusinessLogicError


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True)

    # Shared by every record written in one roll-call
    roll_call_id = Column(String(36), nullable=False, index=True)

    class_id = Column(
        Integer, ForeignKey("gym_classes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    class_name = Column(String(255), nullable=False)

    member_id = Column(String(128), nullable=False, index=True)
    member_name = Column(String(255), nullable=True)

    trainer_id = Column(String(128), nullable=False)
    present = Column(Boolean, nullable=False)
    session_date = Column(Date, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("roll_call_id", "member_id", name="uq_attendance_roll_call_member"),
        Index("ix_attendance_class_member", "class_id", "member_id"),
    )

    def __repr__(self):
        return f"<AttendanceRecord(id={self.id}, class_id={self.class_id}, member_id={self.member_id}, present={self.present})>"


@event.listens_for(AttendanceRecord, "before_update")
def _reject_attendance_update(mapper, connection, target):
    raise BusinessLogicError(
        "Attendance records are immutable; record a new roll-call instead",
        {"attendance_id": target.id},
    )
