import os

from dotenv import load_dotenv
from pydantic import BaseModel
from pydantic import Field as PydanticField

# Load environment variables from .env file
load_dotenv()

# Deployment Wide Defaults
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Pacific/Auckland")
LOCATION_TIMEOUT_SECONDS = float(os.getenv("LOCATION_TIMEOUT_SECONDS", "5"))
DEFAULT_GPS_INTERVAL_MINUTES = float(os.getenv("DEFAULT_GPS_INTERVAL_MINUTES", "10"))
DEFAULT_AUTO_TRAVEL_INTERVAL_MINUTES = float(
    os.getenv("DEFAULT_AUTO_TRAVEL_INTERVAL_MINUTES", "2")
)
DEFAULT_DETECTION_DISTANCE_METERS = float(
    os.getenv("DEFAULT_DETECTION_DISTANCE_METERS", "200")
)
DEFAULT_PAID_REST_MINUTES = int(os.getenv("DEFAULT_PAID_REST_MINUTES", "10"))

# Firestore Collections
SHIFTS_COLLECTION = os.getenv("SHIFTS_COLLECTION", "shifts")
USERS_COLLECTION = os.getenv("USERS_COLLECTION", "users")


# Per Employee Settings Stored On The User Profile Under "settings"
class EmployeeSettings(BaseModel):
    gpsTracking: bool = True
    gpsInterval: float = PydanticField(default=DEFAULT_GPS_INTERVAL_MINUTES, gt=0)
    requireNotes: bool = False
    autoTravel: bool = False
    autoTravelInterval: float = PydanticField(
        default=DEFAULT_AUTO_TRAVEL_INTERVAL_MINUTES, gt=0
    )
    detectionDistance: float = PydanticField(
        default=DEFAULT_DETECTION_DISTANCE_METERS, gt=0
    )

    def tracking_interval_seconds(self) -> float:
        """Seconds between GPS ticks; auto-travel polls on its own, shorter interval."""
        minutes = self.autoTravelInterval if self.autoTravel else self.gpsInterval
        return minutes * 60

    def tracking_enabled(self) -> bool:
        return self.gpsTracking or self.autoTravel


# Company Wide Settings Stored On The User Profile Under "companySettings"
class CompanySettings(BaseModel):
    paidRestMinutes: int = PydanticField(default=DEFAULT_PAID_REST_MINUTES, gt=0)
    photoVerification: bool = False
