from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from core.errors import InvalidDuration, InvalidIndex, ShiftNotCompleted
from core.settings import APP_TIMEZONE, DEFAULT_PAID_REST_MINUTES
from db.shift_repository import ShiftRepository
from models.break_allocation import ShiftSummary
from models.shift import Break, JobLog, Shift, ShiftStatus, TravelSegment
from utils.breaks import (
    calculate_break_allocation,
    calculate_travel_minutes,
    get_break_entitlements,
)
from utils.datetime_helpers import (
    SystemClock,
    duration_minutes,
    ensure_utc,
    hours_between,
)
from utils.timezone_helpers import build_local_range

MAX_SHIFT_HOURS = 24
MAX_ENTRY_MINUTES = 480
HISTORY_LIMIT = 50

# (hour, minute, "AM"/"PM") as typed into the correction forms
WallClock = Tuple[str, str, str]


class ShiftHistoryService:
    """Direct corrections to completed shifts.

    These bypass the live open/close logic entirely; they only have to keep
    clock-out after clock-in, shifts within 24 hours and entries within
    sensible bounds. Every edit is stamped with who made it.
    """

    clock = SystemClock()
    timezone = APP_TIMEZONE

    @staticmethod
    def add_break_to_shift(
        repository: ShiftRepository, shift_id: str, minutes: int, editor: dict
    ) -> Shift:
        _validate_entry_minutes(minutes, "Break")
        shift = _get_completed_shift(repository, shift_id)

        # Corrections carry no real timing; pin them to the clock-in instant
        shift.breaks.append(
            Break(
                startTime=shift.clockIn,
                endTime=shift.clockIn,
                durationMinutes=minutes,
                manualEntry=True,
            )
        )
        return _save_edit(repository, shift, ["breaks"], editor)

    @staticmethod
    def delete_break_from_shift(
        repository: ShiftRepository, shift_id: str, break_index: int, editor: dict
    ) -> Shift:
        shift = _get_completed_shift(repository, shift_id)
        if not 0 <= break_index < len(shift.breaks):
            raise InvalidIndex(f"No break at index {break_index}")

        del shift.breaks[break_index]
        return _save_edit(repository, shift, ["breaks"], editor)

    @staticmethod
    def add_travel_to_shift(
        repository: ShiftRepository,
        shift_id: str,
        shift_date: date,
        start: WallClock,
        end: WallClock,
        editor: dict,
    ) -> Shift:
        travel_start, travel_end = build_local_range(
            shift_date, start, end, ShiftHistoryService.timezone
        )
        minutes = duration_minutes(travel_start, travel_end)
        if minutes <= 0 or minutes > MAX_ENTRY_MINUTES:
            raise InvalidDuration("Invalid travel duration")

        shift = _get_completed_shift(repository, shift_id)
        shift.travelSegments.append(
            TravelSegment(
                startTime=travel_start, endTime=travel_end, durationMinutes=minutes
            )
        )
        return _save_edit(repository, shift, ["travelSegments"], editor)

    @staticmethod
    def delete_travel_from_shift(
        repository: ShiftRepository, shift_id: str, travel_index: int, editor: dict
    ) -> Shift:
        shift = _get_completed_shift(repository, shift_id)
        if not 0 <= travel_index < len(shift.travelSegments):
            raise InvalidIndex(f"No travel segment at index {travel_index}")

        del shift.travelSegments[travel_index]
        return _save_edit(repository, shift, ["travelSegments"], editor)

    @staticmethod
    def edit_shift(
        repository: ShiftRepository,
        shift_id: str,
        clock_in: datetime,
        clock_out: datetime,
        editor: dict,
        notes: Optional[str] = None,
    ) -> Shift:
        clock_in, clock_out = ensure_utc(clock_in), ensure_utc(clock_out)
        _validate_shift_times(clock_in, clock_out)
        shift = _get_completed_shift(repository, shift_id)

        shift.clockIn = clock_in
        shift.clockOut = clock_out
        fields = ["clockIn", "clockOut"]
        if notes is not None:
            shift.jobLog.field1 = notes
            fields.append("jobLog")
        return _save_edit(repository, shift, fields, editor)

    @staticmethod
    def add_manual_shift(
        repository: ShiftRepository,
        user: dict,
        shift_date: date,
        start: WallClock,
        end: WallClock,
        breaks: List[int],
        travel: List[int],
        notes: str = "",
    ) -> Shift:
        clock_in, clock_out = build_local_range(
            shift_date, start, end, ShiftHistoryService.timezone
        )
        _validate_shift_times(clock_in, clock_out)
        for minutes in breaks:
            _validate_entry_minutes(minutes, "Break")
        for minutes in travel:
            _validate_entry_minutes(minutes, "Travel")

        shift = Shift(
            userId=user["uid"],
            userEmail=user.get("email"),
            clockIn=clock_in,
            clockOut=clock_out,
            breaks=[
                Break(
                    startTime=clock_in,
                    endTime=clock_in,
                    durationMinutes=minutes,
                    manualEntry=True,
                )
                for minutes in breaks
            ],
            travelSegments=[
                TravelSegment(startTime=clock_in, endTime=clock_in, durationMinutes=minutes)
                for minutes in travel
            ],
            jobLog=JobLog(field1=notes),
            status=ShiftStatus.COMPLETED,
            manualEntry=True,
        )
        shift.id = repository.create_shift(shift.to_document())
        return shift

    @staticmethod
    def delete_shift(repository: ShiftRepository, shift_id: str) -> None:
        # A live shift is ended by clocking out, never deleted
        _get_completed_shift(repository, shift_id)
        repository.delete_shift(shift_id)

    @staticmethod
    def list_shift_history(
        repository: ShiftRepository, user_id: str, limit: int = HISTORY_LIMIT
    ) -> List[Shift]:
        """Completed shifts, newest clock-in first."""
        shifts = [
            s for s in repository.list_shifts(user_id) if s.status == ShiftStatus.COMPLETED
        ]
        shifts.sort(key=lambda s: s.clockIn, reverse=True)
        return shifts[:limit]

    @staticmethod
    def summarize_shift(
        shift: Shift,
        paid_rest_minutes: int = DEFAULT_PAID_REST_MINUTES,
        now: Optional[datetime] = None,
    ) -> ShiftSummary:
        end = shift.clockOut or now or ShiftHistoryService.clock.now()
        hours = max(0.0, hours_between(shift.clockIn, end))
        return ShiftSummary(
            shift_id=shift.id or "",
            hours_worked=round(hours, 2),
            entitlement=get_break_entitlements(hours, paid_rest_minutes),
            breaks=calculate_break_allocation(shift.breaks, hours, paid_rest_minutes),
            travel_minutes=calculate_travel_minutes(shift.travelSegments),
        )

    @staticmethod
    def get_shift_summary(
        repository: ShiftRepository,
        shift_id: str,
        paid_rest_minutes: int = DEFAULT_PAID_REST_MINUTES,
    ) -> ShiftSummary:
        return ShiftHistoryService.summarize_shift(
            repository.get_shift(shift_id), paid_rest_minutes
        )


def _validate_shift_times(clock_in: datetime, clock_out: datetime) -> None:
    if clock_out <= clock_in:
        raise InvalidDuration("Clock out must be after clock in")
    if clock_out - clock_in > timedelta(hours=MAX_SHIFT_HOURS):
        raise InvalidDuration(f"Shift cannot exceed {MAX_SHIFT_HOURS} hours")


def _validate_entry_minutes(minutes: int, label: str) -> None:
    if not 0 < minutes <= MAX_ENTRY_MINUTES:
        raise InvalidDuration(
            f"{label} must be between 1 and {MAX_ENTRY_MINUTES} minutes"
        )


def _get_completed_shift(repository: ShiftRepository, shift_id: str) -> Shift:
    shift = repository.get_shift(shift_id)
    if shift.status != ShiftStatus.COMPLETED:
        raise ShiftNotCompleted(shift_id)
    return shift


def _save_edit(
    repository: ShiftRepository, shift: Shift, fields: List[str], editor: dict
) -> Shift:
    shift.editedAt = ShiftHistoryService.clock.now()
    shift.editedBy = editor.get("uid")
    shift.editedByEmail = editor.get("email")

    document = shift.to_document()
    partial: Dict[str, object] = {
        field: document[field]
        for field in fields + ["editedAt", "editedBy", "editedByEmail"]
        if field in document
    }
    repository.update_shift(shift.id, partial)
    return shift
