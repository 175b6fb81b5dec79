import logging
from datetime import datetime
from typing import AsyncIterator, List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from config import load_settings
from database import build_engine, build_session_factory, init_db, seed_tables
from errors import ReservationError
from models import ReservationStatus, TableState
from reporting import (
    OccupancyStats,
    ReservationStats,
    collect_occupancy_stats,
    collect_reservation_stats,
)
from reservations import ReservationManager

settings = load_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Restaurant Table Scheduling")

# Error kind -> HTTP status
ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "unavailable": status.HTTP_409_CONFLICT,
    "capacity_exceeded": 422,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "invalid_request": status.HTTP_400_BAD_REQUEST,
}


# Pydantic Schemas for Request/Response
class TableRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    number: int
    capacity: int
    location: str
    state: TableState
    reserved_for_id: Optional[int]


class ReservationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    table_id: int
    customer_id: Optional[int]
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    party_size: int
    status: ReservationStatus
    notes: str
    created_at: datetime
    updated_at: Optional[datetime]


class ReservationCreate(BaseModel):
    table_id: int
    start_time: datetime
    party_size: int = Field(gt=0)
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    customer_id: Optional[int] = None
    notes: Optional[str] = None


class ReservationUpdate(BaseModel):
    start_time: Optional[datetime] = None
    table_id: Optional[int] = None
    party_size: Optional[int] = Field(default=None, gt=0)
    duration_minutes: Optional[int] = Field(default=None, gt=0)


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class WalkInRequest(BaseModel):
    party_size: int = Field(gt=0)
    location: Optional[str] = None


class TableStateUpdate(BaseModel):
    state: TableState


class AvailabilityResult(BaseModel):
    table_id: int
    start_time: datetime
    duration_minutes: int
    available: bool


class AlternativeRead(BaseModel):
    start_time: datetime
    table: TableRead


class ExpireResult(BaseModel):
    expired: int


@app.on_event("startup")
async def on_startup():
    app.state.engine = build_engine()
    app.state.session_factory = build_session_factory(app.state.engine)
    await init_db(app.state.engine)
    # Initial inventory is handed in by whoever launches the app
    seed = getattr(app.state, "table_seed", None)
    if seed:
        async with app.state.session_factory() as session:
            await seed_tables(session, seed)


@app.on_event("shutdown")
async def on_shutdown():
    await app.state.engine.dispose()


async def get_manager(request: Request) -> AsyncIterator[ReservationManager]:
    async with request.app.state.session_factory() as session:
        yield ReservationManager(session, settings=settings)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    return JSONResponse(
        status_code=ERROR_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST),
        content={"error": exc.kind, "detail": exc.message},
    )


# --- Tables ---
@app.get("/tables", response_model=List[TableRead])
async def list_tables(manager: ReservationManager = Depends(get_manager)):
    return [TableRead.model_validate(t) for t in await manager.tables.list_tables()]


@app.get("/tables/available", response_model=List[TableRead])
async def available_tables(
    party_size: int,
    start_time: datetime,
    duration_minutes: Optional[int] = None,
    location: Optional[str] = None,
    manager: ReservationManager = Depends(get_manager),
):
    found = await manager.find_available_tables(party_size, start_time, duration_minutes, location)
    return [TableRead.model_validate(t) for t in found]


@app.get("/tables/alternatives", response_model=List[AlternativeRead])
async def alternative_tables(
    party_size: int,
    start_time: datetime,
    duration_minutes: Optional[int] = None,
    location: Optional[str] = None,
    manager: ReservationManager = Depends(get_manager),
):
    found = await manager.suggest_alternatives(party_size, start_time, duration_minutes, location)
    return [
        AlternativeRead(start_time=a.start, table=TableRead.model_validate(a.table))
        for a in found
    ]


@app.get("/tables/{table_id}/availability", response_model=AvailabilityResult)
async def table_availability(
    table_id: int,
    start_time: datetime,
    duration_minutes: int,
    exclude_id: Optional[int] = None,
    manager: ReservationManager = Depends(get_manager),
):
    available = await manager.check_availability(table_id, start_time, duration_minutes, exclude_id)
    return AvailabilityResult(
        table_id=table_id,
        start_time=start_time,
        duration_minutes=duration_minutes,
        available=available,
    )


@app.post("/tables/walk-in", response_model=TableRead)
async def seat_walk_in(body: WalkInRequest, manager: ReservationManager = Depends(get_manager)):
    return TableRead.model_validate(await manager.seat_walk_in(body.party_size, body.location))


@app.post("/tables/{table_id}/occupy", response_model=TableRead)
async def occupy_table(table_id: int, manager: ReservationManager = Depends(get_manager)):
    return TableRead.model_validate(await manager.occupy_table(table_id))


@app.post("/tables/{table_id}/release", response_model=TableRead)
async def release_table(table_id: int, manager: ReservationManager = Depends(get_manager)):
    return TableRead.model_validate(await manager.release_table(table_id))


@app.put("/tables/{table_id}/state", response_model=TableRead)
async def set_table_state(
    table_id: int, body: TableStateUpdate, manager: ReservationManager = Depends(get_manager)
):
    return TableRead.model_validate(await manager.set_table_state(table_id, body.state))


# --- Reservations ---
@app.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    body: ReservationCreate, manager: ReservationManager = Depends(get_manager)
):
    reservation = await manager.create_reservation(
        body.table_id,
        body.start_time,
        body.party_size,
        duration_minutes=body.duration_minutes,
        customer_id=body.customer_id,
        notes=body.notes,
    )
    return ReservationRead.model_validate(reservation)


@app.get("/reservations", response_model=List[ReservationRead])
async def list_reservations(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    reservation_status: Optional[ReservationStatus] = Query(default=None, alias="status"),
    customer_id: Optional[int] = None,
    limit: Optional[int] = Query(default=None, gt=0),
    manager: ReservationManager = Depends(get_manager),
):
    found = await manager.list_reservations(start, end, reservation_status, customer_id, limit)
    return [ReservationRead.model_validate(r) for r in found]


@app.get("/reservations/upcoming", response_model=List[ReservationRead])
async def upcoming_reservations(
    hours: Optional[int] = Query(default=None, gt=0),
    manager: ReservationManager = Depends(get_manager),
):
    return [ReservationRead.model_validate(r) for r in await manager.upcoming_reservations(hours)]


@app.post("/reservations/expire", response_model=ExpireResult)
async def expire_reservations(manager: ReservationManager = Depends(get_manager)):
    return ExpireResult(expired=await manager.expire_stale_reservations())


@app.get("/reservations/{reservation_id}", response_model=ReservationRead)
async def get_reservation(reservation_id: int, manager: ReservationManager = Depends(get_manager)):
    return ReservationRead.model_validate(await manager.get_reservation(reservation_id))


@app.patch("/reservations/{reservation_id}", response_model=ReservationRead)
async def modify_reservation(
    reservation_id: int, body: ReservationUpdate, manager: ReservationManager = Depends(get_manager)
):
    reservation = await manager.modify_reservation(
        reservation_id,
        new_start=body.start_time,
        new_table_id=body.table_id,
        new_party_size=body.party_size,
        new_duration_minutes=body.duration_minutes,
    )
    return ReservationRead.model_validate(reservation)


@app.post("/reservations/{reservation_id}/confirm", response_model=ReservationRead)
async def confirm_reservation(reservation_id: int, manager: ReservationManager = Depends(get_manager)):
    return ReservationRead.model_validate(await manager.confirm_reservation(reservation_id))


@app.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int,
    body: Optional[CancelRequest] = None,
    manager: ReservationManager = Depends(get_manager),
):
    reason = body.reason if body else None
    return ReservationRead.model_validate(await manager.cancel_reservation(reservation_id, reason))


@app.post("/reservations/{reservation_id}/complete", response_model=ReservationRead)
async def complete_reservation(reservation_id: int, manager: ReservationManager = Depends(get_manager)):
    return ReservationRead.model_validate(await manager.complete_reservation(reservation_id))


# --- Statistics ---
@app.get("/stats/occupancy", response_model=OccupancyStats)
async def occupancy(manager: ReservationManager = Depends(get_manager)):
    return await collect_occupancy_stats(manager.tables)


@app.get("/stats/reservations", response_model=ReservationStats)
async def reservation_summary(
    start: datetime, end: datetime, manager: ReservationManager = Depends(get_manager)
):
    return await collect_reservation_stats(manager.reservations, start, end)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
