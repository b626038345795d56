"""
Live shift lifecycle for one user.

NoShift -> Active -> Completed, with two independent flags while active: on
break and traveling. Every mutation runs under a single asyncio.Lock so the
shift has exactly one writer, and the in-memory shift is only replaced once
the repository write has gone through.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from core.errors import (
    AlreadyActive,
    ClockInInProgress,
    InvalidDuration,
    InvalidIndex,
    NoActiveShift,
    NotesRequired,
    ShiftNotFound,
)
from core.settings import EmployeeSettings, LOCATION_TIMEOUT_SECONDS
from db.shift_repository import ShiftRepository
from models.location import Location, LocationSource
from models.shift import Break, Shift, ShiftStatus, TravelSegment
from services.location import LocationProvider, NullLocationProvider, capture_location
from services.location_tracker import LocationTracker
from services.travel_detector import (
    DetectorState,
    TravelEnd,
    TravelEvent,
    TravelStart,
    TravelEndReason,
    resume_detector_state,
    step,
)
from utils.datetime_helpers import (
    SystemClock,
    duration_minutes,
    from_epoch_ms,
    round_minutes,
    to_epoch_ms,
)
from utils.gps_filter import accept_sample
from utils.storage import upload_clock_in_photo, validate_photo_type

logger = logging.getLogger(__name__)

MAX_MANUAL_BREAK_MINUTES = 480

PhotoUploader = Callable[[str, str, bytes, str], Awaitable[str]]


class ShiftLifecycle:
    def __init__(
        self,
        user_id: str,
        repository: ShiftRepository,
        location_provider: Optional[LocationProvider] = None,
        clock=None,
        settings: Optional[EmployeeSettings] = None,
        user_email: Optional[str] = None,
        photo_uploader: Optional[PhotoUploader] = None,
        background_tracking: bool = True,
        location_timeout_seconds: float = LOCATION_TIMEOUT_SECONDS,
    ):
        self.user_id = user_id
        self.user_email = user_email
        self.repository = repository
        self.location_provider = location_provider or NullLocationProvider()
        self.clock = clock or SystemClock()
        self.settings = settings or EmployeeSettings()
        self.photo_uploader = photo_uploader or upload_clock_in_photo
        self.background_tracking = background_tracking
        self.location_timeout_seconds = location_timeout_seconds

        self._lock = asyncio.Lock()
        self._clock_in_pending = False
        self._shift: Optional[Shift] = None
        self._detector = DetectorState()
        self._last_recorded: Optional[Location] = None
        self._last_save_ms = 0
        self._background: Set[asyncio.Task] = set()
        self._tracker = LocationTracker(
            self.track_once,
            self.settings_interval_seconds,
            name=f"gps-{user_id}",
        )

    # --- State ---

    @property
    def shift(self) -> Optional[Shift]:
        return self._shift

    @property
    def on_break(self) -> bool:
        return self._shift is not None and self._shift.on_break

    @property
    def traveling(self) -> bool:
        return self._shift is not None and self._shift.traveling

    @property
    def detector_state(self) -> DetectorState:
        return self._detector

    @property
    def tracking(self) -> bool:
        return self._tracker.running

    def settings_interval_seconds(self) -> float:
        return self.settings.tracking_interval_seconds()

    async def load(self) -> Optional[Shift]:
        """Pick up the user's active shift (e.g. after an app restart)."""
        async with self._lock:
            shift = await self._call(self.repository.list_active_shift, self.user_id)
            self._adopt(shift)
        await self._sync_tracking()
        return shift

    async def close(self) -> None:
        await self._tracker.stop()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # --- Clock In / Out ---

    async def clock_in(
        self,
        location: Optional[Location] = None,
        photo: Optional[bytes] = None,
        photo_content_type: str = "image/jpeg",
    ) -> Shift:
        if self._clock_in_pending:
            raise ClockInInProgress()
        self._clock_in_pending = True

        try:
            if photo is not None:
                validate_photo_type(photo_content_type)

            async with self._lock:
                if self._shift is not None:
                    raise AlreadyActive(self.user_id)

                existing = await self._call(
                    self.repository.list_active_shift, self.user_id
                )
                if existing is not None:
                    self._adopt(existing)
                else:
                    clock_in_location = await self._resolve_location(
                        location, LocationSource.CLOCK_IN
                    )
                    shift = Shift(
                        userId=self.user_id,
                        userEmail=self.user_email,
                        clockIn=self.clock.now(),
                        clockInLocation=clock_in_location,
                        locationHistory=[clock_in_location] if clock_in_location else [],
                        status=ShiftStatus.ACTIVE,
                    )
                    shift.id = await self._call(
                        self.repository.create_shift, shift.to_document()
                    )
                    self._adopt(shift)
        finally:
            self._clock_in_pending = False

        await self._sync_tracking()
        if existing is not None:
            # Picked up a shift started elsewhere; it is tracked from here on
            raise AlreadyActive(self.user_id)

        logger.info(f"[SHIFT] {self.user_id} clocked in (shift {shift.id})")

        if photo is not None:
            self._spawn(self._attach_photo(shift.id, photo, photo_content_type))
        return shift

    async def clock_out(
        self, location: Optional[Location] = None, notes: Optional[str] = None
    ) -> Shift:
        async with self._lock:
            shift = self._require_shift()
            updated = shift.model_copy(deep=True)

            if notes is not None:
                updated.jobLog.field1 = notes
            if self.settings.requireNotes and not updated.jobLog.field1.strip():
                raise NotesRequired()

            clock_out_location = await self._resolve_location(
                location, LocationSource.CLOCK_OUT
            )
            now = self.clock.now()

            # Nothing may be stored with a dangling open break or segment
            break_index = updated.open_break_index()
            if break_index is not None:
                self._close_entry(updated.breaks[break_index], now, clock_out_location)

            travel_index = updated.open_travel_index()
            if travel_index is not None:
                self._close_entry(
                    updated.travelSegments[travel_index], now, clock_out_location
                )

            updated.clockOut = now
            updated.clockOutLocation = clock_out_location
            if clock_out_location:
                updated.locationHistory.append(clock_out_location)
            updated.status = ShiftStatus.COMPLETED.value

            await self._commit(
                updated,
                [
                    "clockOut",
                    "clockOutLocation",
                    "breaks",
                    "travelSegments",
                    "locationHistory",
                    "jobLog",
                    "status",
                ],
            )
            self._adopt(None)

        await self._tracker.stop()
        logger.info(f"[SHIFT] {self.user_id} clocked out (shift {updated.id})")
        return updated

    # --- Breaks ---

    async def start_break(self, location: Optional[Location] = None) -> Optional[Shift]:
        async with self._lock:
            shift = self._shift
            if shift is None or shift.on_break:
                return None

            start_location = await self._resolve_location(
                location, LocationSource.BREAK_START
            )
            updated = shift.model_copy(deep=True)
            updated.breaks.append(
                Break(
                    startTime=self.clock.now(),
                    manualEntry=False,
                    startLocation=start_location,
                )
            )
            if start_location:
                updated.locationHistory.append(start_location)

            await self._commit(updated, ["breaks", "locationHistory"])
            return updated

    async def end_break(self, location: Optional[Location] = None) -> Optional[Shift]:
        async with self._lock:
            shift = self._shift
            if shift is None:
                return None
            index = shift.open_break_index()
            if index is None:
                return None

            end_location = await self._resolve_location(
                location, LocationSource.BREAK_END
            )
            updated = shift.model_copy(deep=True)
            self._close_entry(updated.breaks[index], self.clock.now(), end_location)
            if end_location:
                updated.locationHistory.append(end_location)

            await self._commit(updated, ["breaks", "locationHistory"])
            return updated

    async def add_preset_break(self, minutes: int) -> Optional[Shift]:
        """Record an already-finished break of a fixed length."""
        if not 0 < minutes <= MAX_MANUAL_BREAK_MINUTES:
            raise InvalidDuration(
                f"Break must be between 1 and {MAX_MANUAL_BREAK_MINUTES} minutes"
            )

        async with self._lock:
            shift = self._shift
            if shift is None:
                return None

            now = self.clock.now()
            updated = shift.model_copy(deep=True)
            updated.breaks.append(
                Break(startTime=now, endTime=now, durationMinutes=minutes, manualEntry=True)
            )
            await self._commit(updated, ["breaks"])
            return updated

    async def delete_break(self, index: int) -> Optional[Shift]:
        async with self._lock:
            shift = self._shift
            if shift is None:
                return None
            if not 0 <= index < len(shift.breaks):
                raise InvalidIndex(f"No break at index {index}")

            updated = shift.model_copy(deep=True)
            del updated.breaks[index]
            await self._commit(updated, ["breaks"])
            return updated

    # --- Travel ---

    async def start_travel(self, location: Optional[Location] = None) -> Optional[Shift]:
        async with self._lock:
            shift = self._shift
            if shift is None or shift.traveling:
                return None

            start_location = await self._resolve_location(
                location, LocationSource.TRAVEL_START
            )
            now = self.clock.now()
            updated = shift.model_copy(deep=True)
            updated.travelSegments.append(
                TravelSegment(startTime=now, startLocation=start_location)
            )
            if start_location:
                updated.locationHistory.append(start_location)

            await self._commit(updated, ["travelSegments", "locationHistory"])

            # Keep the detector in step so it can end a manually started trip
            self._detector = self._detector.model_copy(
                update={
                    "traveling": True,
                    "stationary_since": to_epoch_ms(now),
                    "last_known_location": start_location
                    or self._detector.last_known_location,
                }
            )
            return updated

    async def end_travel(self, location: Optional[Location] = None) -> Optional[Shift]:
        async with self._lock:
            shift = self._shift
            if shift is None:
                return None
            index = shift.open_travel_index()
            if index is None:
                return None

            end_location = await self._resolve_location(
                location, LocationSource.TRAVEL_END
            )
            updated = shift.model_copy(deep=True)
            self._close_entry(
                updated.travelSegments[index], self.clock.now(), end_location
            )
            if end_location:
                updated.locationHistory.append(end_location)

            await self._commit(updated, ["travelSegments", "locationHistory"])

            detector_update = {"traveling": False, "stationary_since": None}
            if end_location:
                detector_update["anchor_location"] = end_location
                detector_update["last_known_location"] = end_location
            self._detector = self._detector.model_copy(update=detector_update)
            return updated

    # --- Job Log ---

    async def save_job_log(
        self,
        field1: Optional[str] = None,
        field2: Optional[str] = None,
        field3: Optional[str] = None,
    ) -> Optional[Shift]:
        async with self._lock:
            shift = self._shift
            if shift is None:
                return None

            updated = shift.model_copy(deep=True)
            if field1 is not None:
                updated.jobLog.field1 = field1
            if field2 is not None:
                updated.jobLog.field2 = field2
            if field3 is not None:
                updated.jobLog.field3 = field3

            await self._commit(updated, ["jobLog"])
            return updated

    # --- GPS ---

    async def record_sample(self, sample: Location) -> List[TravelEvent]:
        """
        Run one GPS fix through the quality filter and, with auto-travel on,
        the travel detector. Accepted fixes land in the location history.
        """
        async with self._lock:
            shift = self._shift
            if shift is None:
                return []

            now_ms = to_epoch_ms(self.clock.now())
            if not accept_sample(sample, self._last_recorded, self._last_save_ms, now_ms):
                return []

            tracked = sample.tagged(LocationSource.TRACKING)
            updated = shift.model_copy(deep=True)
            updated.locationHistory.append(tracked)

            detector, events = self._detector, []
            if self.settings.autoTravel:
                detector, events = step(
                    tracked, self._detector, self.settings.detectionDistance
                )
                for event in events:
                    self._apply_travel_event(updated, event)

            await self._commit(updated, ["locationHistory", "travelSegments"])
            self._detector = detector
            self._last_recorded = tracked
            self._last_save_ms = now_ms

        for event in events:
            logger.info(f"[SHIFT] Auto travel {event.kind} for {self.user_id}")
        return events

    async def track_once(self) -> List[TravelEvent]:
        """One tracking tick: bounded location capture, then record it."""
        if self._shift is None:
            return []
        sample = await capture_location(
            self.location_provider,
            LocationSource.TRACKING,
            self.location_timeout_seconds,
        )
        if sample is None:
            return []
        return await self.record_sample(sample)

    async def set_auto_travel(self, enabled: bool) -> None:
        """
        Switch auto-travel on or off. Switching off suspends detection but
        leaves an open auto segment open.
        """
        async with self._lock:
            self.settings = self.settings.model_copy(update={"autoTravel": enabled})
            if enabled and self._shift is not None:
                self._detector = resume_detector_state(self._shift)
        await self._sync_tracking()

    # --- Internals ---

    def _require_shift(self) -> Shift:
        if self._shift is None:
            raise NoActiveShift(self.user_id)
        return self._shift

    def _adopt(self, shift: Optional[Shift]) -> None:
        self._shift = shift
        if shift is None:
            self._detector = DetectorState()
            self._last_recorded = None
            self._last_save_ms = 0
            return

        self._detector = resume_detector_state(shift)
        if shift.locationHistory:
            self._last_recorded = shift.locationHistory[-1]
            self._last_save_ms = self._last_recorded.timestamp

    def _close_entry(self, entry, now, end_location: Optional[Location]) -> None:
        entry.endTime = now
        entry.durationMinutes = max(0, duration_minutes(entry.startTime, now))
        if end_location is not None:
            entry.endLocation = end_location

    def _apply_travel_event(self, shift: Shift, event: TravelEvent) -> None:
        event_time = from_epoch_ms(event.location.timestamp)

        if isinstance(event, TravelStart):
            if shift.open_travel_index() is None:
                shift.travelSegments.append(
                    TravelSegment(
                        startTime=event_time,
                        startLocation=event.location,
                        autoStarted=True,
                    )
                )
            shift.locationHistory.append(event.location)
            return

        if isinstance(event, TravelEnd):
            index = shift.open_travel_index()
            if index is not None:
                segment = shift.travelSegments[index]
                segment.endTime = event_time
                segment.durationMinutes = max(
                    0,
                    round_minutes(event.location.timestamp - to_epoch_ms(segment.startTime)),
                )
                segment.endLocation = event.location
                segment.autoEnded = True
            shift.locationHistory.append(event.location)
            if event.reason == TravelEndReason.ARRIVED:
                logger.info(f"[SHIFT] Re-anchored {self.user_id} at arrival point")

    async def _resolve_location(
        self, location: Optional[Location], source: LocationSource
    ) -> Optional[Location]:
        if location is not None:
            return location.tagged(source) if location.has_valid_coordinates() else None
        return await capture_location(
            self.location_provider, source, self.location_timeout_seconds
        )

    async def _commit(self, shift: Shift, fields: List[str]) -> None:
        document = shift.to_document()
        partial = {field: document[field] for field in fields if field in document}
        try:
            await self._call(self.repository.update_shift, shift.id, partial)
        except ShiftNotFound:
            # Deleted underneath us; there is no active shift any more
            logger.warning(f"[SHIFT] Active shift {shift.id} of {self.user_id} is gone")
            self._adopt(None)
            raise
        self._shift = shift

    async def _call(self, fn, *args):
        # Firestore calls block; keep them off the event loop
        return await asyncio.to_thread(fn, *args)

    async def _sync_tracking(self) -> None:
        wanted = (
            self.background_tracking
            and self._shift is not None
            and self.settings.tracking_enabled()
        )
        if wanted:
            self._tracker.start()
        else:
            await self._tracker.stop()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _attach_photo(self, shift_id: str, photo: bytes, content_type: str) -> None:
        try:
            object_path = await self.photo_uploader(
                self.user_id, shift_id, photo, content_type
            )
            async with self._lock:
                await self._call(
                    self.repository.update_shift,
                    shift_id,
                    {"clockInPhotoUrl": object_path},
                )
                if self._shift is not None and self._shift.id == shift_id:
                    self._shift = self._shift.model_copy(
                        update={"clockInPhotoUrl": object_path}
                    )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Clock-in already succeeded; a missing photo is reported, not fatal
            logger.error(f"[PHOTO] Could not attach clock-in photo to {shift_id}: {e}")
