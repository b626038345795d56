import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


# Why A Location Was Recorded
class LocationSource(str, Enum):
    TRACKING = "tracking"
    CLOCK_IN = "clockIn"
    CLOCK_OUT = "clockOut"
    TRAVEL_START = "travelStart"
    TRAVEL_END = "travelEnd"
    BREAK_START = "breakStart"
    BREAK_END = "breakEnd"


# A Single GPS Fix; Timestamp Is Epoch Milliseconds
class Location(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: float = 0.0
    timestamp: int
    source: Optional[LocationSource] = None

    def has_valid_coordinates(self) -> bool:
        if self.latitude is None or self.longitude is None:
            return False
        if math.isnan(self.latitude) or math.isnan(self.longitude):
            return False
        return abs(self.latitude) <= 90 and abs(self.longitude) <= 180

    def tagged(self, source: LocationSource) -> "Location":
        """Copy of this fix carrying a different source tag."""
        return self.model_copy(update={"source": LocationSource(source).value})
