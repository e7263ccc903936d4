"""
Live Location Sync Client

Publishes position samples to the remote live-location store:
- Fire-and-forget publish() that never blocks the acquisition loop
- Bounded worker pool; when the backlog is full the oldest sample is dropped
- At-most-once delivery: failures are logged and discarded, never retried
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote

import aiohttp

from ...models.tracking import PositionSample


# Directive resolved by the remote store to its own clock
SERVER_TIMESTAMP = {".sv": "timestamp"}


class PublishError(Exception):
    """A single publish failed (network error or non-2xx response)"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def is_auth_failure(self) -> bool:
        return self.status in (401, 403)


def build_payload(session_id: str, sample: PositionSample) -> Dict[str, Any]:
    """Serialize a sample into the live-location wire body"""
    return {
        "latitude": sample.latitude,
        "longitude": sample.longitude,
        "lastUpdated": dict(SERVER_TIMESTAMP),
        "sosId": session_id,
    }


@dataclass
class PublishRequest:
    """One queued publish"""
    user_id: str
    identity_token: str = field(repr=False)
    session_id: str
    sample: PositionSample
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass
class SyncStats:
    """Publish statistics"""
    queued: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    auth_failures: int = 0
    in_flight: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


class LiveLocationTransport(ABC):
    """Wire transport to the remote live-location store"""

    @abstractmethod
    async def write(self, user_id: str, identity_token: str, payload: Dict[str, Any]) -> None:
        """
        Write ``payload`` to the node owned by ``user_id``.

        Raises:
            PublishError: on any network failure or non-2xx response
        """

    async def remove(self, user_id: str, identity_token: str) -> None:
        """Remove the node owned by ``user_id``"""
        raise NotImplementedError

    async def close(self) -> None:
        pass


class RestLiveLocationTransport(LiveLocationTransport):
    """REST transport for a realtime-database style JSON endpoint"""

    def __init__(self, base_url: str, path_template: str = "live_locations/{user_id}.json",
                 method: str = "PATCH", timeout: float = 10.0):
        self.base_url = base_url.rstrip('/')
        self.path_template = path_template
        self.method = method.upper()
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger(__name__)

    async def _ensure_session(self):
        """Ensure HTTP session is created"""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    def build_url(self, user_id: str) -> str:
        path = self.path_template.format(user_id=quote(user_id, safe=''))
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _request(self, method: str, user_id: str, identity_token: str,
                       payload: Optional[Dict[str, Any]] = None) -> int:
        await self._ensure_session()

        headers = {"Accept": "application/json"}
        if method == "POST":
            # Lets POST-only proxies apply the write as a partial update
            headers["X-HTTP-Method-Override"] = "PATCH"

        try:
            async with self.session.request(
                method,
                self.build_url(user_id),
                params={"auth": identity_token},
                json=payload,
                headers=headers
            ) as response:
                if not 200 <= response.status < 300:
                    raise PublishError(
                        f"{method} returned HTTP {response.status}",
                        status=response.status
                    )
                return response.status
        except aiohttp.ClientError as e:
            raise PublishError(f"{method} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise PublishError(f"{method} timed out after {self.timeout}s") from e

    async def write(self, user_id: str, identity_token: str, payload: Dict[str, Any]) -> None:
        await self._request(self.method, user_id, identity_token, payload)

    async def remove(self, user_id: str, identity_token: str) -> None:
        await self._request("DELETE", user_id, identity_token)

    async def close(self) -> None:
        """Close HTTP session"""
        if self.session and not self.session.closed:
            await self.session.close()


class SyncClient:
    """Bounded, non-blocking publisher of position samples"""

    def __init__(self, transport: LiveLocationTransport, max_concurrent: int = 4,
                 max_pending: int = 32, cleanup_timeout: float = 10.0):
        if max_concurrent < 1 or max_pending < 1:
            raise ValueError("max_concurrent and max_pending must be positive")

        self.transport = transport
        self.max_concurrent = max_concurrent
        self.max_pending = max_pending
        self.cleanup_timeout = cleanup_timeout
        self.stats = SyncStats()
        self.logger = logging.getLogger(__name__)

        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._side_tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending_count(self) -> int:
        return self._queue.qsize() if self._queue else 0

    def _ensure_workers(self):
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.max_pending)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"sync-worker-{index}")
            for index in range(self.max_concurrent)
        ]

    def publish(self, user_id: str, identity_token: str, session_id: str,
                sample: PositionSample) -> None:
        """
        Queue one sample for delivery and return immediately.

        Must be called from the event loop thread. Delivery is best-effort:
        the outcome is only logged.
        """
        if self._closed:
            self.logger.debug("Sync client closed, discarding sample")
            return

        self._ensure_workers()

        if self._queue.full():
            # Newer positions supersede older ones
            self._queue.get_nowait()
            self._queue.task_done()
            self.stats.dropped += 1
            self.logger.debug("Publish backlog full, dropped oldest sample")

        self._queue.put_nowait(PublishRequest(user_id, identity_token, session_id, sample))
        self.stats.queued += 1

    async def _worker(self):
        while True:
            request = await self._queue.get()
            try:
                await self._send(request)
            finally:
                self._queue.task_done()

    async def _send(self, request: PublishRequest):
        self.stats.attempted += 1
        self.stats.in_flight += 1
        payload = build_payload(request.session_id, request.sample)

        try:
            await self.transport.write(request.user_id, request.identity_token, payload)
            self.stats.succeeded += 1
            self.logger.debug(
                f"Published location for session {request.session_id} "
                f"({request.sample.latitude:.6f}, {request.sample.longitude:.6f})"
            )
        except PublishError as e:
            self.stats.failed += 1
            if e.is_auth_failure:
                self.stats.auth_failures += 1
                self.logger.warning(
                    f"Live location rejected for session {request.session_id}: "
                    f"identity token not accepted ({e})"
                )
            else:
                self.logger.warning(f"Live location publish failed for session {request.session_id}: {e}")
        except Exception as e:
            self.stats.failed += 1
            self.logger.error(f"Unexpected publish error for session {request.session_id}: {e}")
        finally:
            self.stats.in_flight -= 1

    def discard_pending(self) -> int:
        """Drop queued publishes that have not started yet"""
        dropped = 0
        while self._queue and not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1

        self.stats.dropped += dropped
        if dropped:
            self.logger.info(f"Discarded {dropped} queued publishes")
        return dropped

    def clear_remote(self, user_id: str, identity_token: str) -> None:
        """Best-effort removal of the remote live-location node"""
        async def remove():
            try:
                await self.transport.remove(user_id, identity_token)
                self.logger.info("Removed remote live location")
            except (PublishError, NotImplementedError) as e:
                self.logger.warning(f"Could not remove remote live location: {e}")

        task = asyncio.create_task(remove())
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until nothing is queued or in flight"""
        if self._queue is None:
            return True
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def close(self):
        """
        Cancel workers without waiting for in-flight publishes and close the transport.

        A pending remote cleanup gets up to ``cleanup_timeout`` seconds to finish.
        """
        self._closed = True
        self.discard_pending()

        if self._side_tasks:
            await asyncio.wait(set(self._side_tasks), timeout=self.cleanup_timeout)

        tasks = self._workers + list(self._side_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._side_tasks.clear()

        await self.transport.close()
        self.logger.info(f"Sync client closed ({self.stats.to_dict()})")
