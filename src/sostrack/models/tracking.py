"""
Tracking data models for SOSTrack

Defines the session credentials, position samples and controller states
shared by the tracking service components.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
import time


# Field name used by the external start command, mapped to the model attribute
SESSION_FIELDS = {
    'sosId': 'sos_id',
    'sosToken': 'sos_token',
    'identityToken': 'identity_token',
    'userId': 'user_id',
}


class InvalidSessionError(ValueError):
    """Raised when a start request is missing one or more session fields"""

    def __init__(self, missing_fields: List[str]):
        self.missing_fields = list(missing_fields)
        super().__init__(f"Missing required session field(s): {', '.join(self.missing_fields)}")


class ControllerState(Enum):
    """Session controller states"""
    IDLE = "idle"
    ACTIVE = "active"
    STOPPING = "stopping"


@dataclass(frozen=True)
class TrackingSession:
    """Credentials of the active SOS tracking session"""
    sos_id: str
    sos_token: str = field(repr=False)
    identity_token: str = field(repr=False)
    user_id: str

    def missing_fields(self) -> List[str]:
        """Return the external names of empty or absent fields"""
        return [
            external for external, attr in SESSION_FIELDS.items()
            if not isinstance(getattr(self, attr), str) or not getattr(self, attr).strip()
        ]

    def is_complete(self) -> bool:
        return not self.missing_fields()

    def validate(self) -> 'TrackingSession':
        """Raise InvalidSessionError unless all four fields are present"""
        missing = self.missing_fields()
        if missing:
            raise InvalidSessionError(missing)
        return self

    @classmethod
    def from_request(cls, data: Mapping[str, Any]) -> 'TrackingSession':
        """
        Build a validated session from a start command payload.

        Accepts either the external names (sosId, sosToken, identityToken,
        userId) or the attribute names. ``idToken`` is accepted as an alias
        of ``identityToken``.

        Raises:
            InvalidSessionError: if any field is missing or empty
        """
        values = {}
        for external, attr in SESSION_FIELDS.items():
            value = data.get(external, data.get(attr))
            if value is None and external == 'identityToken':
                value = data.get('idToken')
            values[attr] = value if value is not None else ""

        return cls(**values).validate()

    def to_dict(self) -> Dict[str, str]:
        return {external: getattr(self, attr) for external, attr in SESSION_FIELDS.items()}


@dataclass(frozen=True)
class PositionSample:
    """A single position fix delivered by a provider"""
    latitude: float
    longitude: float
    provider: str = ""
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    monotonic: float = field(default_factory=time.monotonic, repr=False, compare=False)
    accuracy: Optional[float] = None  # metres

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class SubscriptionParams:
    """Rate-limiting thresholds applied by the position providers"""
    min_time_interval: float = 5.0  # seconds
    min_distance: float = 5.0  # meters
