from pydantic import BaseModel


# Statutory Break Budget For A Given Number Of Hours
class EntitlementResult(BaseModel):
    paid_breaks: int
    unpaid_breaks: int
    paid_minutes: int
    unpaid_minutes: int
    paid_rest_minutes: int


# Split Of Actual Break Minutes Into Paid / Unpaid (Derived, Never Stored)
class AllocationResult(BaseModel):
    paid: int
    unpaid: int
    total: int


# Reporting View Of A Single Shift
class ShiftSummary(BaseModel):
    shift_id: str
    hours_worked: float
    entitlement: EntitlementResult
    breaks: AllocationResult
    travel_minutes: int
