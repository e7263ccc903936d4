"""
SOS Tracking Service

Entry point for the external commands of the tracking subsystem:
- Start command: validate and start tracking an SOS session
- Stop command: halt tracking and clear the persisted session
- Status query: whether a session is persisted
- Boot signal: resume an interrupted session
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from ...core.database import DatabaseManager
from ...core.logging import LogContext, get_structured_logger
from ...models.tracking import SubscriptionParams, TrackingSession
from .foreground import ForegroundKeeper, StatusFileForeground
from .location_source import LocationSource, PositionProvider
from .providers import build_provider
from .recovery import BOOT_COMPLETED, RecoveryTrigger
from .session_controller import SessionController
from .session_store import SessionStore
from .sync_client import LiveLocationTransport, RestLiveLocationTransport, SyncClient


class TrackingService:
    """
    Wires the session store, location source, sync client and controller
    together from configuration
    """

    def __init__(self, config: Dict[str, Any], database: DatabaseManager,
                 providers: Optional[List[PositionProvider]] = None,
                 transport: Optional[LiveLocationTransport] = None,
                 foreground: Optional[ForegroundKeeper] = None):
        self.logger = logging.getLogger(__name__)
        self.audit = get_structured_logger("audit")
        self.config = config or {}

        tracking_config = self.config.get('tracking', {})
        sync_config = self.config.get('sync', {})
        foreground_config = self.config.get('foreground', {})

        self.store = SessionStore(database)

        if providers is None:
            providers = [build_provider(entry) for entry in tracking_config.get('providers', [])]
        self.location_source = LocationSource(providers)

        if transport is None:
            transport = RestLiveLocationTransport(
                base_url=sync_config.get('base_url', ''),
                path_template=sync_config.get('path_template', 'live_locations/{user_id}.json'),
                method=sync_config.get('method', 'PATCH'),
                timeout=sync_config.get('timeout', 10),
            )
        self.sync_client = SyncClient(
            transport,
            max_concurrent=sync_config.get('max_concurrent_publishes', 4),
            max_pending=sync_config.get('max_pending_publishes', 32),
            cleanup_timeout=sync_config.get('timeout', 10),
        )

        if foreground is None:
            foreground = StatusFileForeground(
                status_file=foreground_config.get('status_file', 'data/sostrack.status.json'),
                heartbeat_interval=foreground_config.get('heartbeat_interval', 30),
                title=foreground_config.get('notification_title', 'SOS Active'),
                text=foreground_config.get(
                    'notification_text',
                    'Emergency tracking is active. Your location is being shared.'
                ),
            )
        self.foreground = foreground

        self.controller = SessionController(
            store=self.store,
            location_source=self.location_source,
            sync_client=self.sync_client,
            foreground=self.foreground,
            params=SubscriptionParams(
                min_time_interval=float(tracking_config.get('min_time_interval', 5.0)),
                min_distance=float(tracking_config.get('min_distance', 5.0)),
            ),
            sample_queue_size=tracking_config.get('sample_queue_size', 64),
            clear_remote_on_stop=sync_config.get('clear_remote_on_stop', False),
        )
        self.recovery = RecoveryTrigger(self.store, self.controller)

    async def start_tracking(self, request: Mapping[str, Any]) -> TrackingSession:
        """
        Handle the start command.

        Args:
            request: {sosId, sosToken, identityToken, userId}

        Raises:
            InvalidSessionError: listing the missing field(s)
        """
        session = TrackingSession.from_request(request)
        with LogContext(self.audit, sos_id=session.sos_id, user_id=session.user_id) as log:
            await self.controller.start(session)
            log.info("sos_tracking_started", providers=self.controller.get_status()['providers'])
        return session

    async def stop_tracking(self) -> None:
        """Handle the stop command"""
        session = self.controller.session
        await self.controller.stop()
        self.audit.info("sos_tracking_stopped", sos_id=session.sos_id if session else None)

    def is_tracking(self) -> bool:
        """Status query: a session id is persisted"""
        return self.store.has_session_id()

    async def handle_boot(self, signal_name: str = BOOT_COMPLETED) -> bool:
        """Handle a platform boot signal"""
        resumed = await self.recovery.handle_boot(signal_name)
        self.audit.info("boot_signal_handled", signal=signal_name, resumed=resumed)
        return resumed

    async def resume(self) -> bool:
        return await self.controller.resume()

    async def shutdown(self) -> None:
        """Release providers and network resources; the persisted session is kept"""
        await self.controller.shutdown()
        await self.sync_client.close()

    def get_status(self) -> Dict[str, Any]:
        status = self.controller.get_status()
        status['persisted'] = self.is_tracking()
        return status
