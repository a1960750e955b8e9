"""Class Booking Model - a member's seat in a gym class"""
import enum

from sqlalchemy import (
    Column,
    Integer,
    ForeignKey,
    String,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from app.core.database import Base, UTCDateTime, utcnow


class BookingStatus(str, enum.Enum):
    booked = "booked"
    cancelled = "cancelled"
    attended = "attended"


# Statuses that hold a seat in the class
SEAT_HOLDING_STATUSES = (BookingStatus.booked.value, BookingStatus.attended.value)


class Booking(Base):
    """Booking records; cancelled rows are kept, re-booking inserts a new row"""
    __tablename__ = "class_bookings"

    id = Column(Integer, primary_key=True, index=True)

    class_id = Column(Integer, ForeignKey("gym_classes.id", ondelete="CASCADE"), nullable=False, index=True)
    class_name = Column(String(255), nullable=False)

    # Identity snapshot at booking time
    user_id = Column(String(128), nullable=False, index=True)
    user_name = Column(String(255), nullable=True)
    user_email = Column(String(255), nullable=True)

    status = Column(String(20), default=BookingStatus.booked.value, nullable=False, index=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    cancelled_at = Column(UTCDateTime, nullable=True)
    attended_at = Column(UTCDateTime, nullable=True)

    gym_class = relationship("GymClass", back_populates="bookings")

    __table_args__ = (
        # At most one active booking per member and class
        Index(
            "uq_class_bookings_active_member",
            "class_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'booked'"),
            sqlite_where=text("status = 'booked'"),
        ),
        Index("ix_class_bookings_class_status", "class_id", "status"),
        Index("ix_class_bookings_user_status", "user_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == BookingStatus.booked.value

    def __repr__(self):
        return f"<Booking(id={self.id}, user_id={self.user_id}, class_id={self.class_id}, status={self.status})>"
