"""
Session Controller

State machine for the SOS tracking session:
- IDLE -> ACTIVE on start()/resume(): persist, enter foreground mode, subscribe
- ACTIVE -> ACTIVE on each sample: hand off to the sync client
- ACTIVE -> STOPPING -> IDLE on stop(): release providers, clear durable state
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from ...models.tracking import (
    ControllerState,
    PositionSample,
    SubscriptionParams,
    TrackingSession,
)
from .foreground import ForegroundKeeper, NullForeground
from .location_source import (
    LocationError,
    LocationSource,
    LocationSubscription,
    PermissionDeniedError,
    cancel_task,
)
from .session_store import SessionStore
from .sync_client import SyncClient


class SessionController:
    """Single owner of the active tracking session"""

    def __init__(self, store: SessionStore, location_source: LocationSource,
                 sync_client: SyncClient, foreground: Optional[ForegroundKeeper] = None,
                 params: Optional[SubscriptionParams] = None, sample_queue_size: int = 64,
                 clear_remote_on_stop: bool = False):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.location_source = location_source
        self.sync_client = sync_client
        self.foreground = foreground or NullForeground()
        self.params = params or SubscriptionParams()
        self.sample_queue_size = sample_queue_size
        self.clear_remote_on_stop = clear_remote_on_stop

        self.state = ControllerState.IDLE
        self._session: Optional[TrackingSession] = None
        self._subscription: Optional[LocationSubscription] = None
        self._samples: Optional[asyncio.Queue] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._setup_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

        self.samples_received = 0
        self.samples_dropped = 0

    @property
    def session(self) -> Optional[TrackingSession]:
        return self._session

    @property
    def is_active(self) -> bool:
        return self.state is ControllerState.ACTIVE

    async def start(self, session: TrackingSession) -> None:
        """
        Start tracking ``session``; reconfigures the loop if already active.

        Raises:
            InvalidSessionError: if a session field is missing (nothing is changed)
            PersistenceError: if the session cannot be saved
            PermissionDeniedError: if location access is refused
            LocationError: if no provider could be started
        """
        session.validate()

        async with self._lock:
            if self.state is ControllerState.ACTIVE:
                await self._reconfigure(session, persist=True)
                return
            await self._activate(session, persist=True)

    async def resume(self) -> bool:
        """
        Resume the persisted session, if any.

        Returns:
            True if a session is being tracked afterwards
        """
        async with self._lock:
            # Read under the lock so a concurrent stop() cannot be undone
            session = self.store.load()
            if session is None:
                self.logger.info("No persisted session to resume")
                return False

            if self.state is ControllerState.ACTIVE:
                if self._session == session:
                    self.logger.debug(f"Session {session.sos_id} already being tracked")
                else:
                    await self._reconfigure(session, persist=False)
                return True

            self.logger.info(f"Resuming persisted session {session.sos_id}")
            await self._activate(session, persist=False)

        return self.is_active

    async def stop(self) -> None:
        """
        Stop tracking and clear the durable session. Idempotent.

        Raises:
            PersistenceError: if the durable session cannot be cleared
        """
        # Abort an in-progress subscription setup instead of waiting for it
        if self._setup_task and not self._setup_task.done():
            self._setup_task.cancel()

        async with self._lock:
            session = self._session
            try:
                if self.state is ControllerState.ACTIVE:
                    self.state = ControllerState.STOPPING
                    await self._release()
                if session is None and self.clear_remote_on_stop:
                    # Stop issued outside the tracking process
                    session = self.store.load()
                self.store.clear()
            finally:
                self._session = None
                self.state = ControllerState.IDLE
                await self.foreground.exit()

            if session:
                if self.clear_remote_on_stop:
                    self.sync_client.clear_remote(session.user_id, session.identity_token)
                self.logger.info(f"Stopped tracking session {session.sos_id}")

    async def shutdown(self) -> None:
        """Release resources on process exit, keeping the durable session for recovery"""
        if self._setup_task and not self._setup_task.done():
            self._setup_task.cancel()

        async with self._lock:
            try:
                if self.state is ControllerState.ACTIVE:
                    self.state = ControllerState.STOPPING
                    await self._release()
            finally:
                self._session = None
                self.state = ControllerState.IDLE
                await self.foreground.exit()

    async def _activate(self, session: TrackingSession, persist: bool) -> None:
        if persist:
            self.store.save(session)

        self._session = session
        self._samples = asyncio.Queue(maxsize=self.sample_queue_size)

        try:
            await self.foreground.enter(session)
            self._setup_task = asyncio.create_task(
                self.location_source.subscribe(self._on_sample, self.params)
            )
            await asyncio.wait({self._setup_task})

            if self._setup_task.cancelled():
                self.logger.info(f"Subscription setup for session {session.sos_id} cancelled")
                subscription = None
            else:
                subscription = self._setup_task.result()
        except PermissionDeniedError as e:
            self.logger.error(f"Location permission missing, aborting session {session.sos_id}: {e}")
            await self._abort_activation()
            raise
        except LocationError as e:
            self.logger.error(f"Location updates unavailable, aborting session {session.sos_id}: {e}")
            await self._abort_activation()
            raise
        except BaseException:
            await self._abort_activation()
            raise
        finally:
            self._setup_task = None

        if subscription is None:
            await self._abort_activation()
            return

        self._subscription = subscription
        self._consumer_task = asyncio.create_task(self._consume_samples())
        self.state = ControllerState.ACTIVE
        self.logger.info(
            f"Tracking session {session.sos_id} via {', '.join(subscription.provider_names)}"
        )

    async def _abort_activation(self):
        if self._setup_task and not self._setup_task.done():
            self._setup_task.cancel()
            await asyncio.wait({self._setup_task})

        self._session = None
        self._samples = None
        self.state = ControllerState.IDLE
        await self.foreground.exit()

    async def _reconfigure(self, session: TrackingSession, persist: bool) -> None:
        if persist:
            self.store.save(session)

        previous = self._session
        self._session = session
        await self.foreground.enter(session)

        if previous and previous.sos_id != session.sos_id:
            self.logger.info(f"Tracking loop reconfigured from session {previous.sos_id} to {session.sos_id}")
        else:
            self.logger.info(f"Tracking loop refreshed for session {session.sos_id}")

    async def _release(self):
        try:
            await self.location_source.unsubscribe(self._subscription)
        finally:
            self._subscription = None
            await cancel_task(self._consumer_task)
            self._consumer_task = None
            self._samples = None
            self.sync_client.discard_pending()

    def _on_sample(self, sample: PositionSample) -> None:
        """Provider callback; never blocks"""
        samples = self._samples
        if samples is None:
            return

        if samples.full():
            samples.get_nowait()
            self.samples_dropped += 1
        samples.put_nowait(sample)

    async def _consume_samples(self):
        samples = self._samples
        while True:
            sample = await samples.get()
            session = self._session
            if session is None:
                continue

            self.samples_received += 1
            self.logger.debug(
                f"Location changed: {sample.latitude:.6f}, {sample.longitude:.6f} ({sample.provider})"
            )
            self.sync_client.publish(session.user_id, session.identity_token, session.sos_id, sample)

    def get_status(self) -> Dict[str, Any]:
        """Get controller status"""
        return {
            'state': self.state.value,
            'sos_id': self._session.sos_id if self._session else None,
            'providers': self._subscription.provider_names if self._subscription else [],
            'samples_received': self.samples_received,
            'samples_dropped': self.samples_dropped,
            'sync': self.sync_client.stats.to_dict(),
        }
