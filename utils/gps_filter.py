from typing import Optional

from models.location import Location
from utils.geofence import distance_between

MAX_ACCURACY_M = 15  # fixes worse than this are mostly building multipath
MIN_MOVE_M = 30
MIN_SAVE_INTERVAL_MS = 30_000


def accept_sample(
    sample: Location,
    last_recorded: Optional[Location],
    last_save_timestamp: int,
    now_ms: Optional[int] = None,
) -> bool:
    """Decide whether a raw GPS fix is worth recording.

    Three independent gates must all pass: the fix is accurate enough, it is
    far enough from the last recorded fix, and enough time has passed since
    the last save. Nothing is mutated here; the caller updates
    ``last_recorded`` and ``last_save_timestamp`` only when this returns True.

    Args:
        sample: Incoming fix.
        last_recorded: Last fix that was accepted, if any.
        last_save_timestamp: Epoch ms of the last accepted save (0 if none).
        now_ms: Current time in epoch ms; defaults to the sample's timestamp.

    Returns:
        bool: True if the sample should be recorded.
    """
    if not sample.has_valid_coordinates():
        return False

    if sample.accuracy > MAX_ACCURACY_M:
        return False

    if last_recorded is not None and last_recorded.has_valid_coordinates():
        if distance_between(sample, last_recorded) < MIN_MOVE_M:
            return False

    now = sample.timestamp if now_ms is None else now_ms
    return now - last_save_timestamp >= MIN_SAVE_INTERVAL_MS
