from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import CheckConstraint, DateTime


class TableState(str, Enum):
    FREE = "Free"
    OCCUPIED = "Occupied"
    RESERVED = "Reserved"
    MAINTENANCE = "Maintenance"
    BLOCKED = "Blocked"


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# Statuses that hold a window on the table
ACTIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)

# Tables in these states are never offered, whatever the window
OUT_OF_SERVICE_STATES = (TableState.MAINTENANCE, TableState.BLOCKED)


class DiningTable(SQLModel, table=True):
    __tablename__ = "tables"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_table_capacity_positive"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    number: int = Field(index=True, unique=True)
    capacity: int
    location: str = Field(default="interior")
    state: TableState = Field(default=TableState.FREE)
    # Reservation the table is currently held for while Reserved
    reserved_for_id: Optional[int] = Field(default=None)
    # Bumped on every write through the scheduler, see TableStore.claim
    version: int = Field(default=1)

    def is_reserved_for(self, reservation_id: int) -> bool:
        return self.state == TableState.RESERVED and self.reserved_for_id == reservation_id


class Reservation(SQLModel, table=True):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_reservation_duration_positive"),
        CheckConstraint("party_size > 0", name="ck_reservation_party_positive"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    table_id: int = Field(foreign_key="tables.id", index=True)
    customer_id: Optional[int] = Field(default=None, index=True)
    # Timestamps are naive UTC, stored in plain TIMESTAMP columns
    start_time: datetime = Field(sa_type=DateTime(), index=True)
    duration_minutes: int
    party_size: int
    status: ReservationStatus = Field(default=ReservationStatus.PENDING, index=True)
    notes: str = Field(default="")
    created_at: datetime = Field(sa_type=DateTime())
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime())

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def append_note(self, text: str, at: datetime) -> None:
        line = f"[{at:%Y-%m-%d %H:%M}] {text}"
        self.notes = f"{self.notes}\n{line}" if self.notes else line
