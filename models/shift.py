from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator
from pydantic import Field as PydanticField

from models.location import Location
from utils.datetime_helpers import ensure_utc, format_utc_datetime


# Only Two Stored Statuses; "No Shift" Is The Absence Of An Active Document
class ShiftStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class _TimedEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    startTime: datetime
    endTime: Optional[datetime] = None
    durationMinutes: Optional[int] = None
    startLocation: Optional[Location] = None
    endLocation: Optional[Location] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_serializer("startTime", "endTime", when_used="json")
    def serialize_times(self, dt: Optional[datetime]) -> Optional[str]:
        return format_utc_datetime(dt)

    @property
    def is_open(self) -> bool:
        return self.endTime is None


class Break(_TimedEntry):
    manualEntry: bool = False


class TravelSegment(_TimedEntry):
    autoStarted: Optional[bool] = None
    autoEnded: Optional[bool] = None


# Free Text Job Notes; Labels Are Configured Per Company
class JobLog(BaseModel):
    field1: str = ""
    field2: str = ""
    field3: str = ""

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> "JobLog":
        data = data or {}
        # Older records stored the first field as "notes"
        return cls(
            field1=data.get("field1") or data.get("notes") or "",
            field2=data.get("field2") or "",
            field3=data.get("field3") or "",
        )


class Shift(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[str] = None
    userId: str
    userEmail: Optional[str] = None
    clockIn: datetime
    clockOut: Optional[datetime] = None
    clockInLocation: Optional[Location] = None
    clockOutLocation: Optional[Location] = None
    clockInPhotoUrl: Optional[str] = None
    locationHistory: List[Location] = PydanticField(default_factory=list)
    breaks: List[Break] = PydanticField(default_factory=list)
    travelSegments: List[TravelSegment] = PydanticField(default_factory=list)
    jobLog: JobLog = PydanticField(default_factory=JobLog)
    status: ShiftStatus = ShiftStatus.ACTIVE
    manualEntry: Optional[bool] = None
    editedAt: Optional[datetime] = None
    editedBy: Optional[str] = None
    editedByEmail: Optional[str] = None

    @field_validator("locationHistory", "breaks", "travelSegments", mode="before")
    @classmethod
    def _missing_as_empty(cls, value):
        # Older documents may not carry these arrays at all
        return [] if value is None else value

    @field_validator("jobLog", mode="before")
    @classmethod
    def _parse_job_log(cls, value):
        if isinstance(value, JobLog):
            return value
        return JobLog.from_document(value)

    @field_validator("clockIn", "clockOut", "editedAt")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_serializer("clockIn", "clockOut", "editedAt", when_used="json")
    def serialize_times(self, dt: Optional[datetime]) -> Optional[str]:
        return format_utc_datetime(dt)

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "Shift":
        """Parse a stored shift document into the typed model."""
        return cls.model_validate({**data, "id": doc_id})

    def to_document(self) -> Dict[str, Any]:
        """Stored representation; absent optionals are left out entirely."""
        return self.model_dump(exclude={"id"}, exclude_none=True)

    # --- Lifecycle Helpers ---

    @property
    def is_active(self) -> bool:
        return self.status == ShiftStatus.ACTIVE

    def open_break_index(self) -> Optional[int]:
        for index, entry in enumerate(self.breaks):
            if entry.is_open and not entry.manualEntry:
                return index
        return None

    def open_travel_index(self) -> Optional[int]:
        for index, segment in enumerate(self.travelSegments):
            if segment.is_open:
                return index
        return None

    @property
    def on_break(self) -> bool:
        return self.open_break_index() is not None

    @property
    def traveling(self) -> bool:
        return self.open_travel_index() is not None
