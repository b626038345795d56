"""
Geofence based auto-travel detection.

The detector is a pure step function over an immutable state: it is fed one
filtered GPS sample at a time and answers with the next state plus any travel
events. Two states exist, idle and traveling. Leaving the geofence around the
anchor starts travel; travel ends when the worker comes back inside the
geofence or has stayed put for five minutes somewhere else, in which case
that spot becomes the new anchor.
"""

from enum import Enum
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from models.location import Location, LocationSource
from models.shift import Shift
from utils.datetime_helpers import to_epoch_ms
from utils.geofence import distance_between, is_within_radius

DEFAULT_DETECTION_DISTANCE_M = 200
STATIONARY_RADIUS_M = 50
STATIONARY_DURATION_MS = 5 * 60 * 1000


class TravelEndReason(str, Enum):
    RETURNED = "returned"
    ARRIVED = "arrived"


class DetectorState(BaseModel):
    model_config = ConfigDict(frozen=True)

    anchor_location: Optional[Location] = None
    traveling: bool = False
    stationary_since: Optional[int] = None
    last_known_location: Optional[Location] = None


class TravelStart(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["travel_start"] = "travel_start"
    location: Location


class TravelEnd(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["travel_end"] = "travel_end"
    location: Location
    reason: TravelEndReason


TravelEvent = Union[TravelStart, TravelEnd]


def step(
    sample: Location,
    state: DetectorState,
    detection_distance_meters: float = DEFAULT_DETECTION_DISTANCE_M,
) -> Tuple[DetectorState, List[TravelEvent]]:
    """
    Advance the detector by one accepted GPS sample.

    Args:
        sample: Filtered GPS fix.
        state: Current detector state.
        detection_distance_meters: Geofence radius around the anchor.

    Returns:
        Tuple of (new state, events emitted by this sample).
    """
    if not sample.has_valid_coordinates():
        return state, []

    anchor = state.anchor_location
    if anchor is None or not anchor.has_valid_coordinates():
        return (
            state.model_copy(
                update={"anchor_location": sample, "last_known_location": sample}
            ),
            [],
        )

    inside = is_within_radius(sample, anchor, detection_distance_meters)

    if not state.traveling:
        if not inside:
            new_state = state.model_copy(
                update={
                    "traveling": True,
                    "stationary_since": sample.timestamp,
                    "last_known_location": sample,
                }
            )
            return new_state, [
                TravelStart(location=sample.tagged(LocationSource.TRAVEL_START))
            ]
        return state.model_copy(update={"last_known_location": sample}), []

    # Back inside the geofence
    if inside:
        new_state = state.model_copy(
            update={
                "traveling": False,
                "stationary_since": None,
                "last_known_location": sample,
            }
        )
        return new_state, [
            TravelEnd(
                location=sample.tagged(LocationSource.TRAVEL_END),
                reason=TravelEndReason.RETURNED,
            )
        ]

    last_known = state.last_known_location
    moved = (
        last_known is None
        or not last_known.has_valid_coordinates()
        or distance_between(sample, last_known) >= STATIONARY_RADIUS_M
    )
    if moved or state.stationary_since is None:
        return (
            state.model_copy(
                update={"stationary_since": sample.timestamp, "last_known_location": sample}
            ),
            [],
        )

    if sample.timestamp - state.stationary_since >= STATIONARY_DURATION_MS:
        # Settled somewhere new: this spot becomes the base for the next leg
        new_state = DetectorState(
            anchor_location=sample,
            traveling=False,
            stationary_since=None,
            last_known_location=sample,
        )
        return new_state, [
            TravelEnd(
                location=sample.tagged(LocationSource.TRAVEL_END),
                reason=TravelEndReason.ARRIVED,
            )
        ]

    return state, []


def resume_detector_state(shift: Shift) -> DetectorState:
    """
    Rebuild detector state for an active shift from what was persisted.

    The anchor is the end of the last closed travel segment that recorded
    one, otherwise the clock-in location. No history is replayed.
    """
    anchor = shift.clockInLocation
    for segment in reversed(shift.travelSegments):
        if not segment.is_open and segment.endLocation is not None:
            anchor = segment.endLocation
            break

    open_index = shift.open_travel_index()
    traveling = open_index is not None
    stationary_since = None
    if traveling:
        stationary_since = to_epoch_ms(shift.travelSegments[open_index].startTime)

    last_known = shift.locationHistory[-1] if shift.locationHistory else anchor

    return DetectorState(
        anchor_location=anchor,
        traveling=traveling,
        stationary_since=stationary_since,
        last_known_location=last_known,
    )
