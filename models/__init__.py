from .break_allocation import AllocationResult, EntitlementResult, ShiftSummary
from .location import Location, LocationSource
from .shift import Break, JobLog, Shift, ShiftStatus, TravelSegment
