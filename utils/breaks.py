from typing import Iterable, Optional

from models.break_allocation import AllocationResult, EntitlementResult
from models.shift import Break, TravelSegment

UNPAID_BREAK_MINUTES = 30  # statutory unpaid meal break, not configurable
DEFAULT_PAID_REST_MINUTES = 10
CYCLE_START_HOURS = 16.0  # from here on entitlements repeat every 8 hours
CYCLE_HOURS = 8.0

# (threshold hours, paid breaks, unpaid breaks), highest threshold first
_TIERS = (
    (14.0, 4, 2),
    (12.0, 3, 2),
    (10.0, 3, 1),
    (6.0, 2, 1),
    (4.0, 1, 1),
    (2.0, 1, 0),
)

# Ladder applied to the hours left over after whole 8-hour cycles
_REMAINDER_TIERS = (
    (6.0, 2, 1),
    (4.0, 1, 1),
    (2.0, 1, 0),
)


def _lookup(hours: float, tiers) -> tuple:
    for threshold, paid, unpaid in tiers:
        if hours >= threshold:
            return paid, unpaid
    return 0, 0


def get_break_entitlements(
    hours_worked: float, paid_rest_minutes: int = DEFAULT_PAID_REST_MINUTES
) -> EntitlementResult:
    """Return the statutory break budget for a shift of the given length.

    Follows the Employment Relations Act 2000 rest and meal break tiers. From
    16 hours onwards every full 8-hour cycle is worth two paid rest breaks
    and one unpaid meal break, and the leftover hours are graded again on a
    reduced ladder.

    Args:
        hours_worked: Hours between clock-in and clock-out (float).
        paid_rest_minutes: Length of one paid rest break in minutes.

    Returns:
        EntitlementResult: Break counts and minute budgets (zero for
        non-positive hours).
    """
    if hours_worked >= CYCLE_START_HOURS:
        cycles = int(hours_worked // CYCLE_HOURS)
        remainder = hours_worked % CYCLE_HOURS
        extra_paid, extra_unpaid = _lookup(remainder, _REMAINDER_TIERS)
        paid = cycles * 2 + extra_paid
        unpaid = cycles + extra_unpaid
    else:
        paid, unpaid = _lookup(hours_worked, _TIERS)

    return EntitlementResult(
        paid_breaks=paid,
        unpaid_breaks=unpaid,
        paid_minutes=paid * paid_rest_minutes,
        unpaid_minutes=unpaid * UNPAID_BREAK_MINUTES,
        paid_rest_minutes=paid_rest_minutes,
    )


def calculate_break_allocation(
    breaks: Iterable[Break],
    hours_worked: float,
    paid_rest_minutes: int = DEFAULT_PAID_REST_MINUTES,
) -> AllocationResult:
    """Split the break minutes actually taken into paid and unpaid.

    The first minutes of break time count as paid up to the entitlement,
    whichever breaks they came from; everything beyond is unpaid.

    Args:
        breaks: Breaks recorded on the shift (open breaks count as 0).
        hours_worked: Hours worked on the shift (float).
        paid_rest_minutes: Length of one paid rest break in minutes.

    Returns:
        AllocationResult: Paid, unpaid and total break minutes.
    """
    total = sum(_minutes(b.durationMinutes) for b in breaks)
    entitlement = get_break_entitlements(hours_worked, paid_rest_minutes)
    paid = min(total, entitlement.paid_minutes)
    return AllocationResult(paid=paid, unpaid=max(0, total - paid), total=total)


def calculate_travel_minutes(segments: Optional[Iterable[TravelSegment]]) -> int:
    """Total recorded travel time in minutes (open segments count as 0)."""
    return sum(_minutes(t.durationMinutes) for t in (segments or []))


def _minutes(value: Optional[int]) -> int:
    return value or 0
