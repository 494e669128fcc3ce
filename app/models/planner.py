"""Pydantic models for the day planner."""

from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

# An AQI at or above this value rules out outdoor suggestions
AQI_OUTDOOR_LIMIT = 100
# Precipitation (mm) at or above this value rules out outdoor suggestions
PRECIPITATION_OUTDOOR_LIMIT = 3.0


class LocationSource(str, Enum):
    """Where a resolved location came from."""
    DEVICE = "device"
    IP = "ip"
    DEFAULT = "default"
    MANUAL = "manual"


class ActivityLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class IndoorPreference(str, Enum):
    INDOOR = "indoor"
    OUTDOOR = "outdoor"
    FLEXIBLE = "flexible"


class Budget(str, Enum):
    FREE = "free"
    LOW = "low"
    FLEXIBLE = "flexible"


class SocialLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class BlockStatus(str, Enum):
    """Per-block execution state."""
    EMPTY = "empty"
    LOADING = "loading"
    COMPLETE = "complete"
    ERROR = "error"


class RunStatus(str, Enum):
    """Whole-run state."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"


class ActivitySource(str, Enum):
    MODEL = "model"
    FALLBACK = "fallback"


class Coordinates(BaseModel):
    """Raw device coordinates supplied by the client."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Location(BaseModel):
    """A normalized location, immutable for the lifetime of a run."""

    model_config = ConfigDict(frozen=True)

    city: str = Field(..., min_length=1)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    country: str = ""
    is_default: bool = False
    source: LocationSource

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class EnvironmentSnapshot(BaseModel):
    """Weather and air quality at the planning location."""

    model_config = ConfigDict(frozen=True)

    temperature: float
    precipitation_mm: float = 0.0
    wind_speed_kmh: float = 0.0
    sunrise: str = ""
    sunset: str = ""
    aqi: Optional[int] = None
    is_fallback: bool = False

    @property
    def outdoor_safe(self) -> bool:
        """True when air quality and precipitation allow outdoor activities."""
        air_ok = self.aqi is None or self.aqi < AQI_OUTDOOR_LIMIT
        return air_ok and self.precipitation_mm < PRECIPITATION_OUTDOOR_LIMIT


class TimeBlock(BaseModel):
    """A fixed window of the day that gets its own set of activities."""

    model_config = ConfigDict(frozen=True)

    id: int
    start_time: str = Field(..., description="Start time (e.g., '06:00')")
    end_time: str = Field(..., description="End time (e.g., '09:00')")
    label: str

    @property
    def start_hour(self) -> int:
        return int(self.start_time.split(":")[0])


DEFAULT_TIME_BLOCKS: Tuple[TimeBlock, ...] = (
    TimeBlock(id=0, start_time="06:00", end_time="09:00", label="Early Morning"),
    TimeBlock(id=1, start_time="09:00", end_time="12:00", label="Late Morning"),
    TimeBlock(id=2, start_time="12:00", end_time="15:00", label="Afternoon"),
    TimeBlock(id=3, start_time="15:00", end_time="18:00", label="Late Afternoon"),
    TimeBlock(id=4, start_time="18:00", end_time="21:00", label="Evening"),
    TimeBlock(id=5, start_time="21:00", end_time="22:00", label="Night"),
)


class Activity(BaseModel):
    """A single suggested activity inside a block."""

    model_config = ConfigDict(frozen=True)

    time: str
    activity: str = Field(..., min_length=1)
    clothing: Optional[str] = None
    meal: Optional[str] = None
    notes: Optional[str] = None
    details: Optional[str] = None


class Preferences(BaseModel):
    """Accumulated user preferences steering generation."""

    activity_level: ActivityLevel = ActivityLevel.MODERATE
    indoor_preference: IndoorPreference = IndoorPreference.FLEXIBLE
    budget: Budget = Budget.FLEXIBLE
    social_level: SocialLevel = SocialLevel.MODERATE
    focus: Set[str] = Field(default_factory=set)
    custom_instructions: str = ""

    def merged(self, update: "PreferencesUpdate") -> "Preferences":
        """Return a copy where only the fields set on `update` change."""
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        if "focus" in changes:
            changes["focus"] = set(self.focus) | set(changes["focus"])
        return self.model_copy(update=changes)


class PreferencesUpdate(BaseModel):
    """Partial preferences, as parsed from free-text instructions."""

    activity_level: Optional[ActivityLevel] = None
    indoor_preference: Optional[IndoorPreference] = None
    budget: Optional[Budget] = None
    social_level: Optional[SocialLevel] = None
    focus: Optional[Set[str]] = None
    custom_instructions: Optional[str] = None


class Venue(BaseModel):
    """A nearby place used for social activity and event suggestions."""

    name: str
    kind: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


# --- API payloads ---


class RunRequest(BaseModel):
    """Start a fresh plan."""
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    instructions: Optional[str] = Field(None, description="Free-text preferences")

    def coordinates(self) -> Optional[Coordinates]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(latitude=self.latitude, longitude=self.longitude)


class ModifyScope(str, Enum):
    ALL = "all"
    BLOCK = "block"
    LOCATION = "location"


class ModifyRequest(BaseModel):
    """Modify the current plan."""
    scope: ModifyScope
    instructions: Optional[str] = None
    block_id: Optional[int] = None
    city: Optional[str] = None


class BlockStateResponse(BaseModel):
    block: TimeBlock
    status: BlockStatus
    activities: List[Activity] = Field(default_factory=list)
    message: Optional[str] = None
    source: Optional[ActivitySource] = None


class PlanStateResponse(BaseModel):
    """Serializable view of the current plan."""
    run_status: RunStatus
    is_generating: bool
    location: Optional[Location] = None
    environment: Optional[EnvironmentSnapshot] = None
    outdoor_safe: Optional[bool] = None
    clothing: Optional[str] = None
    preferences: Preferences
    blocks: List[BlockStateResponse]
    social_venues: List[Venue] = Field(default_factory=list)
    local_events: List[Venue] = Field(default_factory=list)
    can_modify: bool
    metadata: Dict[str, Any] = Field(default_factory=dict)
