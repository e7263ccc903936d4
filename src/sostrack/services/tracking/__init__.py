"""
SOS Tracking Service Module

Provides the tracking session lifecycle and location-sync engine:
- Durable session persistence for crash and reboot recovery
- Position acquisition from one or more providers
- Best-effort publishing of each position to the live-location store
"""

from .location_source import LocationSource, LocationError, PermissionDeniedError
from .recovery import RecoveryTrigger
from .session_controller import SessionController
from .session_store import SessionStore
from .sync_client import SyncClient, PublishError
from .tracking_service import TrackingService

__all__ = [
    'LocationSource',
    'LocationError',
    'PermissionDeniedError',
    'RecoveryTrigger',
    'SessionController',
    'SessionStore',
    'SyncClient',
    'PublishError',
    'TrackingService'
]
