import asyncio
import logging
from typing import Optional, Protocol

from core.settings import LOCATION_TIMEOUT_SECONDS
from models.location import Location, LocationSource

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    """Device location source. Must return None, never raise, when denied."""

    async def get_current_location(self, timeout_ms: int) -> Optional[Location]:
        ...


# Used Where Positions Arrive With The Request Instead Of From A Sensor
class NullLocationProvider:
    async def get_current_location(self, timeout_ms: int) -> Optional[Location]:
        return None


class StaticLocationProvider:
    def __init__(self, location: Optional[Location]):
        self.location = location

    async def get_current_location(self, timeout_ms: int) -> Optional[Location]:
        return self.location


async def capture_location(
    provider: LocationProvider,
    source: LocationSource,
    timeout_seconds: float = LOCATION_TIMEOUT_SECONDS,
) -> Optional[Location]:
    """
    Ask the provider for a fix, giving up after ``timeout_seconds``.

    A stalled or missing sensor degrades to "no location" so clock, break and
    travel actions are never held up by it.
    """
    try:
        location = await asyncio.wait_for(
            provider.get_current_location(int(timeout_seconds * 1000)),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(
            f"[LOCATION] Timed out after {timeout_seconds}s waiting for a {source.value} fix"
        )
        return None

    if location is None or not location.has_valid_coordinates():
        return None
    return location.tagged(source)
