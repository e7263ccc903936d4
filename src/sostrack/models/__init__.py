"""
Data models for SOSTrack
"""

from .tracking import (
    ControllerState,
    InvalidSessionError,
    PositionSample,
    SubscriptionParams,
    TrackingSession
)

__all__ = [
    'ControllerState',
    'InvalidSessionError',
    'PositionSample',
    'SubscriptionParams',
    'TrackingSession'
]
