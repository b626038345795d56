"""
Tests for the live shift lifecycle: clock in/out, breaks, travel, GPS
recording with auto-travel, and the async guards around them.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import (
    AlreadyActive,
    ClockInInProgress,
    InvalidDuration,
    InvalidIndex,
    NoActiveShift,
    NotesRequired,
    RepositoryError,
    ShiftNotFound,
    ValidationError,
)
from core.settings import EmployeeSettings
from db.shift_repository import InMemoryShiftRepository
from models.location import Location
from services.location import StaticLocationProvider
from services.shift_lifecycle import ShiftLifecycle
from services.travel_detector import TravelEnd, TravelEndReason, TravelStart
from utils.datetime_helpers import to_epoch_ms

LAT, LON = -36.8485, 174.7633
METERS_PER_DEG_LAT = 111_195


class FakeClock:
    def __init__(self):
        self.current = datetime(2025, 6, 7, 20, 0, tzinfo=timezone.utc)

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class BlockingLocationProvider:
    """Holds every request until released."""

    def __init__(self, location=None):
        self.location = location
        self.release = asyncio.Event()

    async def get_current_location(self, timeout_ms):
        await self.release.wait()
        return self.location


class StalledLocationProvider:
    async def get_current_location(self, timeout_ms):
        await asyncio.sleep(10)
        return None


def here(clock, north_m=0.0, accuracy=5.0):
    return Location(
        latitude=LAT + north_m / METERS_PER_DEG_LAT,
        longitude=LON,
        accuracy=accuracy,
        timestamp=to_epoch_ms(clock.now()),
    )


class FailingRepository(InMemoryShiftRepository):
    """Writes fail while `failing` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    def update_shift(self, shift_id, partial_fields):
        if self.failing:
            raise RepositoryError(f"Could not update shift {shift_id}: unavailable")
        super().update_shift(shift_id, partial_fields)


def make_lifecycle(repository=None, clock=None, **kwargs):
    kwargs.setdefault("background_tracking", False)
    return ShiftLifecycle(
        "user-1",
        repository or InMemoryShiftRepository(),
        clock=clock or FakeClock(),
        user_email="worker@example.com",
        **kwargs,
    )


def test_clock_in_creates_active_shift():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        lifecycle = make_lifecycle(repository, clock)

        shift = await lifecycle.clock_in(here(clock))

        stored = repository.raw_document(shift.id)
        assert stored["status"] == "active"
        assert stored["userId"] == "user-1"
        assert stored["clockInLocation"]["source"] == "clockIn"
        assert len(stored["locationHistory"]) == 1
        assert "clockOut" not in stored
        assert lifecycle.shift.id == shift.id

    asyncio.run(scenario())


def test_second_clock_in_is_rejected():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        lifecycle = make_lifecycle(repository, clock)
        await lifecycle.clock_in(here(clock))

        with pytest.raises(AlreadyActive):
            await lifecycle.clock_in(here(clock))

        # A fresh instance finds the stored active shift
        other = make_lifecycle(repository, clock)
        with pytest.raises(AlreadyActive):
            await other.clock_in(here(clock))
        assert other.shift is not None
        assert len(repository.list_shifts("user-1")) == 1

    asyncio.run(scenario())


def test_concurrent_clock_in_is_guarded():
    async def scenario():
        clock = FakeClock()
        provider = BlockingLocationProvider(here(clock))
        lifecycle = make_lifecycle(
            clock=clock, location_provider=provider, location_timeout_seconds=5
        )

        first = asyncio.create_task(lifecycle.clock_in())
        await asyncio.sleep(0)

        with pytest.raises(ClockInInProgress):
            await lifecycle.clock_in()

        provider.release.set()
        shift = await first
        assert shift.clockInLocation is not None

    asyncio.run(scenario())


def test_location_timeout_degrades_to_no_location():
    async def scenario():
        lifecycle = make_lifecycle(
            location_provider=StalledLocationProvider(), location_timeout_seconds=0.05
        )
        shift = await lifecycle.clock_in()
        assert shift.clockInLocation is None
        assert shift.locationHistory == []

    asyncio.run(scenario())


def test_clock_out_closes_open_break_and_travel():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        lifecycle = make_lifecycle(repository, clock)
        await lifecycle.clock_in(here(clock))

        clock.advance(minutes=30)
        await lifecycle.start_break()
        await lifecycle.start_travel()
        assert lifecycle.on_break and lifecycle.traveling

        clock.advance(minutes=10)
        shift = await lifecycle.clock_out(here(clock))

        assert all(b.endTime is not None for b in shift.breaks)
        assert all(t.endTime is not None for t in shift.travelSegments)
        assert shift.breaks[0].durationMinutes == 10
        assert shift.travelSegments[0].durationMinutes == 10
        assert shift.clockOutLocation.source == "clockOut"

        stored = repository.raw_document(shift.id)
        assert stored["status"] == "completed"
        assert all(b.get("endTime") for b in stored["breaks"])
        assert all(t.get("endTime") for t in stored["travelSegments"])
        assert lifecycle.shift is None

    asyncio.run(scenario())


def test_clock_out_without_shift():
    async def scenario():
        with pytest.raises(NoActiveShift):
            await make_lifecycle().clock_out()

    asyncio.run(scenario())


def test_notes_required_before_clock_out():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(
            clock=clock, settings=EmployeeSettings(requireNotes=True)
        )
        await lifecycle.clock_in(here(clock))

        with pytest.raises(NotesRequired):
            await lifecycle.clock_out(notes="   ")
        assert lifecycle.shift is not None

        shift = await lifecycle.clock_out(notes="Detailed two cars")
        assert shift.jobLog.field1 == "Detailed two cars"

    asyncio.run(scenario())


def test_saved_job_log_satisfies_notes_requirement():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(
            clock=clock, settings=EmployeeSettings(requireNotes=True)
        )
        await lifecycle.clock_in(here(clock))
        await lifecycle.save_job_log(field1="Site A", field3="Ladder used")

        shift = await lifecycle.clock_out()
        assert shift.jobLog.field1 == "Site A"
        assert shift.jobLog.field3 == "Ladder used"

    asyncio.run(scenario())


def test_break_start_end_are_noops_when_not_applicable():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock)
        assert await lifecycle.start_break() is None

        await lifecycle.clock_in(here(clock))
        assert await lifecycle.end_break() is None

        await lifecycle.start_break()
        assert await lifecycle.start_break() is None
        assert len(lifecycle.shift.breaks) == 1

        clock.advance(minutes=15)
        shift = await lifecycle.end_break()
        assert shift.breaks[0].durationMinutes == 15
        assert not lifecycle.on_break

    asyncio.run(scenario())


def test_preset_break_validation():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock)
        await lifecycle.clock_in(here(clock))

        for minutes in (0, -5, 481):
            with pytest.raises(InvalidDuration):
                await lifecycle.add_preset_break(minutes)

        shift = await lifecycle.add_preset_break(15)
        assert shift.breaks[0].manualEntry is True
        assert shift.breaks[0].durationMinutes == 15
        assert not lifecycle.on_break

        with pytest.raises(InvalidIndex):
            await lifecycle.delete_break(3)
        shift = await lifecycle.delete_break(0)
        assert shift.breaks == []

    asyncio.run(scenario())


def test_break_and_travel_are_independent():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock)
        await lifecycle.clock_in(here(clock))

        await lifecycle.start_travel()
        await lifecycle.start_break()
        assert lifecycle.on_break and lifecycle.traveling

        await lifecycle.end_travel()
        assert lifecycle.on_break and not lifecycle.traveling

    asyncio.run(scenario())


def test_auto_travel_through_recorded_samples():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        lifecycle = make_lifecycle(
            repository, clock, settings=EmployeeSettings(autoTravel=True)
        )
        shift = await lifecycle.clock_in(here(clock))

        clock.advance(minutes=1)
        events = await lifecycle.record_sample(here(clock, 250))
        assert len(events) == 1 and isinstance(events[0], TravelStart)
        assert lifecycle.traveling
        assert lifecycle.shift.travelSegments[0].autoStarted is True

        clock.advance(minutes=1)
        events = await lifecycle.record_sample(here(clock, 0))
        assert isinstance(events[0], TravelEnd)
        assert events[0].reason == TravelEndReason.RETURNED
        assert not lifecycle.traveling

        segment = lifecycle.shift.travelSegments[0]
        assert segment.autoEnded is True
        assert segment.durationMinutes == 1

        stored = repository.raw_document(shift.id)
        sources = [loc["source"] for loc in stored["locationHistory"]]
        assert sources == [
            "clockIn",
            "tracking",
            "travelStart",
            "tracking",
            "travelEnd",
        ]

    asyncio.run(scenario())


def test_filtered_samples_are_not_recorded():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock)
        await lifecycle.clock_in(here(clock))

        # Too soon after the clock-in fix
        clock.advance(seconds=10)
        assert await lifecycle.record_sample(here(clock, 100)) == []
        # Too inaccurate
        clock.advance(minutes=1)
        assert await lifecycle.record_sample(here(clock, 100, accuracy=50)) == []
        assert len(lifecycle.shift.locationHistory) == 1

        # Accepted, but auto-travel is off so no events
        assert await lifecycle.record_sample(here(clock, 500)) == []
        assert len(lifecycle.shift.locationHistory) == 2
        assert not lifecycle.traveling

    asyncio.run(scenario())


def test_manual_travel_can_be_ended_by_detector():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock, settings=EmployeeSettings(autoTravel=True))
        await lifecycle.clock_in(here(clock))
        await lifecycle.start_travel(here(clock))
        assert lifecycle.detector_state.traveling

        clock.advance(minutes=2)
        await lifecycle.record_sample(here(clock, 2000))

        # Jitter between two points 40 m apart: past the filter, inside 50 m
        events = []
        for i in range(5):
            clock.advance(minutes=1, seconds=30)
            events = await lifecycle.record_sample(here(clock, 2040 if i % 2 == 0 else 2000))
            if events:
                break

        assert len(events) == 1
        assert events[0].reason == TravelEndReason.ARRIVED
        assert not lifecycle.traveling

        segment = lifecycle.shift.travelSegments[0]
        assert segment.autoStarted is None
        assert segment.autoEnded is True
        assert segment.endLocation.source == "travelEnd"

    asyncio.run(scenario())


def test_set_auto_travel_resumes_detector():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock)
        await lifecycle.clock_in(here(clock))

        await lifecycle.set_auto_travel(True)
        assert lifecycle.settings.autoTravel
        assert lifecycle.detector_state.anchor_location is not None

        await lifecycle.set_auto_travel(False)
        assert not lifecycle.settings.autoTravel

    asyncio.run(scenario())


def test_auto_segment_stays_open_after_auto_travel_switched_off():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock, settings=EmployeeSettings(autoTravel=True))
        await lifecycle.clock_in(here(clock))

        clock.advance(minutes=1)
        events = await lifecycle.record_sample(here(clock, 250))
        assert isinstance(events[0], TravelStart)

        await lifecycle.set_auto_travel(False)

        # Back at the anchor, but nothing is watching any more
        clock.advance(minutes=1)
        assert await lifecycle.record_sample(here(clock, 0)) == []
        assert lifecycle.traveling
        assert lifecycle.shift.travelSegments[0].endTime is None
        assert len(lifecycle.shift.locationHistory) == 4

        clock.advance(minutes=1)
        shift = await lifecycle.end_travel(here(clock, 0))
        segment = shift.travelSegments[0]
        assert segment.autoStarted is True
        assert segment.autoEnded is None
        assert segment.durationMinutes == 2
        assert not lifecycle.traveling

    asyncio.run(scenario())


def test_open_auto_segment_closed_at_clock_out_after_switch_off():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(clock=clock, settings=EmployeeSettings(autoTravel=True))
        await lifecycle.clock_in(here(clock))

        clock.advance(minutes=1)
        await lifecycle.record_sample(here(clock, 250))
        await lifecycle.set_auto_travel(False)

        clock.advance(minutes=4)
        shift = await lifecycle.clock_out(here(clock, 0))
        segment = shift.travelSegments[0]
        assert segment.endTime == clock.now()
        assert segment.durationMinutes == 4

    asyncio.run(scenario())


def test_failed_write_leaves_state_untouched():
    async def scenario():
        clock = FakeClock()
        repository = FailingRepository()
        lifecycle = make_lifecycle(
            repository, clock, settings=EmployeeSettings(autoTravel=True)
        )
        shift = await lifecycle.clock_in(here(clock))
        clock.advance(minutes=1)

        repository.failing = True
        before_shift = lifecycle.shift
        before_detector = lifecycle.detector_state

        with pytest.raises(RepositoryError):
            await lifecycle.record_sample(here(clock, 250))
        assert lifecycle.shift is before_shift
        assert lifecycle.shift.travelSegments == []
        assert len(lifecycle.shift.locationHistory) == 1
        assert lifecycle.detector_state == before_detector
        assert not lifecycle.traveling

        with pytest.raises(RepositoryError):
            await lifecycle.clock_out(here(clock), notes="Done")
        assert lifecycle.shift is before_shift
        assert lifecycle.shift.clockOut is None
        assert repository.raw_document(shift.id)["status"] == "active"

        # Once writes go through again the same fix is accepted
        repository.failing = False
        events = await lifecycle.record_sample(here(clock, 250))
        assert len(events) == 1 and isinstance(events[0], TravelStart)
        assert lifecycle.traveling

    asyncio.run(scenario())


def test_shift_deleted_elsewhere_is_dropped():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        lifecycle = make_lifecycle(repository, clock)
        shift = await lifecycle.clock_in(here(clock))

        repository.delete_shift(shift.id)

        with pytest.raises(ShiftNotFound):
            await lifecycle.clock_out(here(clock), notes="Done")
        assert lifecycle.shift is None
        assert not lifecycle.traveling

        replacement = await lifecycle.clock_in(here(clock))
        assert replacement.id != shift.id
        assert lifecycle.shift.id == replacement.id

    asyncio.run(scenario())


def test_load_resumes_active_shift():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        first = make_lifecycle(repository, clock)
        await first.clock_in(here(clock))
        await first.start_travel(here(clock, 500))

        second = make_lifecycle(repository, clock)
        shift = await second.load()
        assert shift is not None
        assert second.traveling
        assert second.detector_state.traveling
        assert second.detector_state.anchor_location.source == "clockIn"

    asyncio.run(scenario())


def test_photo_is_attached_after_clock_in():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        uploads = []

        async def fake_uploader(user_id, shift_id, content, content_type):
            uploads.append((user_id, shift_id, content, content_type))
            return f"clock_in_photos/{user_id}/{shift_id}/photo.jpg"

        lifecycle = make_lifecycle(repository, clock, photo_uploader=fake_uploader)
        shift = await lifecycle.clock_in(here(clock), photo=b"jpeg-bytes")

        for _ in range(100):
            if lifecycle.shift.clockInPhotoUrl is not None:
                break
            await asyncio.sleep(0.01)

        assert uploads == [("user-1", shift.id, b"jpeg-bytes", "image/jpeg")]
        assert repository.raw_document(shift.id)["clockInPhotoUrl"].endswith("photo.jpg")
        assert lifecycle.shift.clockInPhotoUrl is not None

    asyncio.run(scenario())


def test_bad_photo_type_rejected_before_clock_in():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        lifecycle = make_lifecycle(repository, clock)

        with pytest.raises(ValidationError):
            await lifecycle.clock_in(here(clock), photo=b"x", photo_content_type="text/plain")
        assert repository.list_shifts("user-1") == []

        # The guard is released after a failed attempt
        await lifecycle.clock_in(here(clock))

    asyncio.run(scenario())


def test_failed_photo_upload_keeps_shift():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()

        async def failing_uploader(user_id, shift_id, content, content_type):
            raise RuntimeError("bucket unavailable")

        lifecycle = make_lifecycle(repository, clock, photo_uploader=failing_uploader)
        shift = await lifecycle.clock_in(here(clock), photo=b"jpeg-bytes")
        await asyncio.sleep(0.05)

        assert "clockInPhotoUrl" not in repository.raw_document(shift.id)
        assert lifecycle.shift is not None

    asyncio.run(scenario())


def test_background_tracking_follows_shift():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(
            clock=clock,
            location_provider=StaticLocationProvider(here(clock)),
            background_tracking=True,
        )
        assert not lifecycle.tracking

        await lifecycle.clock_in(here(clock))
        assert lifecycle.tracking

        await lifecycle.clock_out()
        assert not lifecycle.tracking
        await lifecycle.close()

    asyncio.run(scenario())


def test_adopted_shift_is_tracked():
    async def scenario():
        clock = FakeClock()
        repository = InMemoryShiftRepository()
        shift = await make_lifecycle(repository, clock).clock_in(here(clock))

        other = make_lifecycle(
            repository,
            clock,
            location_provider=StaticLocationProvider(here(clock)),
            background_tracking=True,
        )
        with pytest.raises(AlreadyActive):
            await other.clock_in(here(clock))
        assert other.shift.id == shift.id
        assert other.tracking
        await other.close()

    asyncio.run(scenario())


def test_tracking_disabled_in_settings():
    async def scenario():
        clock = FakeClock()
        lifecycle = make_lifecycle(
            clock=clock,
            settings=EmployeeSettings(gpsTracking=False),
            background_tracking=True,
        )
        await lifecycle.clock_in(here(clock))
        assert not lifecycle.tracking

        await lifecycle.set_auto_travel(True)
        assert lifecycle.tracking
        await lifecycle.close()

    asyncio.run(scenario())
