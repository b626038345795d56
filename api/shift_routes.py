import asyncio
import logging
from datetime import date, datetime
from typing import Annotated, Dict, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from core.deps import (
    CurrentUser,
    Repository,
    company_settings_for,
    employee_settings_for,
    is_manager,
)
from core.errors import ValidationError
from db.shift_repository import ShiftRepository
from models.location import Location
from models.shift import Shift
from services.shift_history import ShiftHistoryService
from services.shift_lifecycle import ShiftLifecycle
from utils.breaks import get_break_entitlements
from utils.datetime_helpers import to_epoch_ms

logger = logging.getLogger(__name__)

# --- Pydantic Models for Request Payloads ---


class LocationPayload(BaseModel):
    latitude: float
    longitude: float
    accuracy: float = 0.0
    timestamp: Optional[int] = None


class PunchPayload(BaseModel):
    location: Optional[LocationPayload] = None


class ClockOutPayload(PunchPayload):
    notes: Optional[str] = None


class PresetBreakPayload(BaseModel):
    minutes: int


class JobLogPayload(BaseModel):
    field1: Optional[str] = None
    field2: Optional[str] = None
    field3: Optional[str] = None


class AutoTravelPayload(BaseModel):
    enabled: bool


class WallClockPayload(BaseModel):
    hour: str
    minute: str = "00"
    ampm: str = "AM"

    def as_tuple(self):
        return (self.hour, self.minute, self.ampm)


class TravelEntryPayload(BaseModel):
    date: date
    start: WallClockPayload
    end: WallClockPayload


class ShiftEditPayload(BaseModel):
    clock_in: datetime
    clock_out: datetime
    notes: Optional[str] = None


class ManualShiftPayload(BaseModel):
    date: date
    start: WallClockPayload
    end: WallClockPayload
    breaks: List[int] = Field(default_factory=list)
    travel: List[int] = Field(default_factory=list)
    notes: str = ""


# Defines API Endpoints
router = APIRouter()

# One Live Lifecycle Per Signed-In User
_lifecycles: Dict[str, ShiftLifecycle] = {}
_lifecycles_lock = asyncio.Lock()


async def get_lifecycle(user: dict, repository: ShiftRepository) -> ShiftLifecycle:
    async with _lifecycles_lock:
        lifecycle = _lifecycles.get(user["uid"])
        if lifecycle is None:
            # Fixes arrive with each request, so the server never polls GPS
            lifecycle = ShiftLifecycle(
                user["uid"],
                repository,
                settings=employee_settings_for(user),
                user_email=user.get("email"),
                background_tracking=False,
            )
            await lifecycle.load()
            _lifecycles[user["uid"]] = lifecycle
        return lifecycle


async def close_lifecycles() -> None:
    async with _lifecycles_lock:
        for lifecycle in _lifecycles.values():
            await lifecycle.close()
        _lifecycles.clear()


def _to_location(payload: Optional[LocationPayload], lifecycle: ShiftLifecycle):
    if payload is None:
        return None
    return Location(
        latitude=payload.latitude,
        longitude=payload.longitude,
        accuracy=payload.accuracy,
        timestamp=payload.timestamp or to_epoch_ms(lifecycle.clock.now()),
    )


def _check_access(shift: Shift, user: dict) -> None:
    if shift.userId != user["uid"] and not is_manager(user):
        raise HTTPException(
            status_code=403, detail="You can only change your own shifts."
        )


def _success(data=None) -> dict:
    return {"status": "success", "data": data}


# --- Live Shift ---


# Clock In Endpoint
@router.post("/clock-in")
async def clock_in(
    user: CurrentUser,
    repository: Repository,
    latitude: Annotated[Optional[float], Form()] = None,
    longitude: Annotated[Optional[float], Form()] = None,
    accuracy: Annotated[float, Form()] = 0.0,
    photo: Annotated[
        Optional[UploadFile], File(description="Clock-in verification photo")
    ] = None,
):
    if photo is None and company_settings_for(user).photoVerification:
        raise ValidationError("A clock-in photo is required.")

    lifecycle = await get_lifecycle(user, repository)

    location = None
    if latitude is not None and longitude is not None:
        location = _to_location(
            LocationPayload(latitude=latitude, longitude=longitude, accuracy=accuracy),
            lifecycle,
        )

    content, content_type = None, "image/jpeg"
    if photo is not None:
        content = await photo.read()
        content_type = photo.content_type or content_type

    shift = await lifecycle.clock_in(location, content, content_type)
    return _success(shift)


# Clock Out Endpoint
@router.post("/clock-out")
async def clock_out(
    user: CurrentUser, repository: Repository, payload: ClockOutPayload
):
    lifecycle = await get_lifecycle(user, repository)
    shift = await lifecycle.clock_out(
        _to_location(payload.location, lifecycle), payload.notes
    )
    return _success(shift)


@router.get("/active")
async def get_active_shift(user: CurrentUser, repository: Repository):
    lifecycle = await get_lifecycle(user, repository)
    return _success(
        {
            "shift": lifecycle.shift,
            "on_break": lifecycle.on_break,
            "traveling": lifecycle.traveling,
            "auto_travel": lifecycle.settings.autoTravel,
        }
    )


@router.post("/breaks/start")
async def start_break(
    user: CurrentUser, repository: Repository, payload: Optional[PunchPayload] = None
):
    lifecycle = await get_lifecycle(user, repository)
    location = _to_location(payload.location if payload else None, lifecycle)
    return _success(await lifecycle.start_break(location))


@router.post("/breaks/end")
async def end_break(
    user: CurrentUser, repository: Repository, payload: Optional[PunchPayload] = None
):
    lifecycle = await get_lifecycle(user, repository)
    location = _to_location(payload.location if payload else None, lifecycle)
    return _success(await lifecycle.end_break(location))


@router.post("/breaks/preset")
async def add_preset_break(
    user: CurrentUser, repository: Repository, payload: PresetBreakPayload
):
    lifecycle = await get_lifecycle(user, repository)
    return _success(await lifecycle.add_preset_break(payload.minutes))


@router.delete("/breaks/{index}")
async def delete_active_break(index: int, user: CurrentUser, repository: Repository):
    lifecycle = await get_lifecycle(user, repository)
    return _success(await lifecycle.delete_break(index))


@router.post("/travel/start")
async def start_travel(
    user: CurrentUser, repository: Repository, payload: Optional[PunchPayload] = None
):
    lifecycle = await get_lifecycle(user, repository)
    location = _to_location(payload.location if payload else None, lifecycle)
    return _success(await lifecycle.start_travel(location))


@router.post("/travel/end")
async def end_travel(
    user: CurrentUser, repository: Repository, payload: Optional[PunchPayload] = None
):
    lifecycle = await get_lifecycle(user, repository)
    location = _to_location(payload.location if payload else None, lifecycle)
    return _success(await lifecycle.end_travel(location))


@router.put("/job-log")
async def save_job_log(user: CurrentUser, repository: Repository, payload: JobLogPayload):
    lifecycle = await get_lifecycle(user, repository)
    return _success(
        await lifecycle.save_job_log(payload.field1, payload.field2, payload.field3)
    )


# Background GPS Fix From The Device
@router.post("/locations")
async def record_location(
    user: CurrentUser, repository: Repository, payload: LocationPayload
):
    lifecycle = await get_lifecycle(user, repository)
    events = await lifecycle.record_sample(_to_location(payload, lifecycle))
    return _success(
        {
            "events": events,
            "traveling": lifecycle.traveling,
        }
    )


@router.put("/auto-travel")
async def set_auto_travel(
    user: CurrentUser, repository: Repository, payload: AutoTravelPayload
):
    lifecycle = await get_lifecycle(user, repository)
    await lifecycle.set_auto_travel(payload.enabled)
    return _success({"auto_travel": lifecycle.settings.autoTravel})


# --- Shift History ---


@router.get("/history")
def get_shift_history(user: CurrentUser, repository: Repository, limit: int = 50):
    shifts = ShiftHistoryService.list_shift_history(repository, user["uid"], limit)
    return _success(shifts)


@router.get("/entitlements")
def get_entitlements(hours: float, user: CurrentUser):
    paid_rest = company_settings_for(user).paidRestMinutes
    return _success(get_break_entitlements(hours, paid_rest))


@router.post("/manual")
def add_manual_shift(user: CurrentUser, repository: Repository, payload: ManualShiftPayload):
    shift = ShiftHistoryService.add_manual_shift(
        repository,
        user,
        payload.date,
        payload.start.as_tuple(),
        payload.end.as_tuple(),
        payload.breaks,
        payload.travel,
        payload.notes,
    )
    logger.info(f"[HISTORY] Manual shift {shift.id} added by {user['uid']}")
    return _success(shift)


@router.get("/{shift_id}/summary")
def get_shift_summary(shift_id: str, user: CurrentUser, repository: Repository):
    shift = repository.get_shift(shift_id)
    _check_access(shift, user)
    paid_rest = company_settings_for(user).paidRestMinutes
    return _success(ShiftHistoryService.summarize_shift(shift, paid_rest))


@router.post("/{shift_id}/breaks")
def add_break_to_shift(
    shift_id: str, user: CurrentUser, repository: Repository, payload: PresetBreakPayload
):
    _check_access(repository.get_shift(shift_id), user)
    return _success(
        ShiftHistoryService.add_break_to_shift(
            repository, shift_id, payload.minutes, user
        )
    )


@router.delete("/{shift_id}/breaks/{index}")
def delete_break_from_shift(
    shift_id: str, index: int, user: CurrentUser, repository: Repository
):
    _check_access(repository.get_shift(shift_id), user)
    return _success(
        ShiftHistoryService.delete_break_from_shift(repository, shift_id, index, user)
    )


@router.post("/{shift_id}/travel")
def add_travel_to_shift(
    shift_id: str, user: CurrentUser, repository: Repository, payload: TravelEntryPayload
):
    _check_access(repository.get_shift(shift_id), user)
    return _success(
        ShiftHistoryService.add_travel_to_shift(
            repository,
            shift_id,
            payload.date,
            payload.start.as_tuple(),
            payload.end.as_tuple(),
            user,
        )
    )


@router.delete("/{shift_id}/travel/{index}")
def delete_travel_from_shift(
    shift_id: str, index: int, user: CurrentUser, repository: Repository
):
    _check_access(repository.get_shift(shift_id), user)
    return _success(
        ShiftHistoryService.delete_travel_from_shift(repository, shift_id, index, user)
    )


@router.put("/{shift_id}")
def edit_shift(
    shift_id: str, user: CurrentUser, repository: Repository, payload: ShiftEditPayload
):
    _check_access(repository.get_shift(shift_id), user)
    shift = ShiftHistoryService.edit_shift(
        repository, shift_id, payload.clock_in, payload.clock_out, user, payload.notes
    )
    logger.info(f"[HISTORY] Shift {shift_id} edited by {user['uid']}")
    return _success(shift)


@router.delete("/{shift_id}")
def delete_shift(shift_id: str, user: CurrentUser, repository: Repository):
    _check_access(repository.get_shift(shift_id), user)
    ShiftHistoryService.delete_shift(repository, shift_id)
    logger.info(f"[HISTORY] Shift {shift_id} deleted by {user['uid']}")
    return _success()
