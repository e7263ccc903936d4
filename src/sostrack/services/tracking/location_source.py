"""
Location Source

Owns the registrations with the configured position providers:
- One ProviderSubscription per provider per active session
- Rate limiting by minimum time interval and minimum distance
- Idempotent release of every provider on unsubscribe
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from ...models.tracking import PositionSample, SubscriptionParams


SampleCallback = Callable[[PositionSample], None]

EARTH_RADIUS_M = 6371000.0


class LocationError(Exception):
    """A position provider could not be registered"""
    pass


class PermissionDeniedError(LocationError):
    """Location authorization is unavailable for a provider"""
    pass


def distance_meters(a: PositionSample, b: PositionSample) -> float:
    """Great-circle distance between two samples using the Haversine formula"""
    lat1, lon1 = math.radians(a.latitude), math.radians(a.longitude)
    lat2, lon2 = math.radians(b.latitude), math.radians(b.longitude)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


class SampleThrottle:
    """
    Drops samples that arrive too soon or too close to the last delivered one.

    A sample passes when it is the first one, or when both thresholds are met.
    """

    def __init__(self, params: SubscriptionParams):
        self.params = params
        self._last: Optional[PositionSample] = None

    def accept(self, sample: PositionSample) -> bool:
        if self._last is not None:
            elapsed = sample.monotonic - self._last.monotonic
            if elapsed < self.params.min_time_interval:
                return False
            if distance_meters(self._last, sample) < self.params.min_distance:
                return False

        self._last = sample
        return True


class PositionProvider(ABC):
    """Base class for position providers (satellite, network, replay)"""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{name}")

    @abstractmethod
    async def open(self, emit: SampleCallback, params: SubscriptionParams) -> None:
        """
        Start delivering samples to ``emit``.

        Raises:
            PermissionDeniedError: if location access is not authorized
            LocationError: if the provider cannot be started
        """

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering samples and release provider resources"""


class ProviderSubscription:
    """Ownership handle for one active provider registration"""

    def __init__(self, provider: PositionProvider, callback: SampleCallback,
                 params: SubscriptionParams,
                 on_release: Optional[Callable[['ProviderSubscription'], None]] = None):
        self.provider = provider
        self.callback = callback
        self.throttle = SampleThrottle(params)
        self.params = params
        self._on_release = on_release
        self._opened = False
        self._released = False
        self.logger = logging.getLogger(__name__)

    @property
    def provider_name(self) -> str:
        return self.provider.name

    @property
    def active(self) -> bool:
        return self._opened and not self._released

    async def open(self):
        await self.provider.open(self._deliver, self.params)
        self._opened = True

    def _deliver(self, sample: PositionSample):
        if self._released or not self.throttle.accept(sample):
            return
        try:
            self.callback(sample)
        except Exception as e:
            self.logger.error(f"Sample callback failed for provider {self.provider_name}: {e}")

    async def release(self):
        """Release the provider registration; safe to call more than once"""
        if self._released:
            return
        self._released = True

        try:
            await self.provider.close()
        except Exception as e:
            self.logger.error(f"Error releasing provider {self.provider_name}: {e}")
        finally:
            if self._opened and self._on_release:
                self._on_release(self)


class LocationSubscription:
    """Handle returned by LocationSource.subscribe, one entry per provider"""

    def __init__(self, subscriptions: List[ProviderSubscription]):
        self.subscriptions = subscriptions

    @property
    def provider_names(self) -> List[str]:
        return [sub.provider_name for sub in self.subscriptions]

    @property
    def active(self) -> bool:
        return any(sub.active for sub in self.subscriptions)

    async def release(self):
        for sub in self.subscriptions:
            await sub.release()


class LocationSource:
    """Registers the configured providers and fans their samples into one callback"""

    def __init__(self, providers: List[PositionProvider]):
        if not providers:
            raise ValueError("At least one position provider is required")
        self.providers = providers
        self._active: Dict[str, int] = {provider.name: 0 for provider in providers}
        self.logger = logging.getLogger(__name__)

    def active_subscriptions(self, provider_name: Optional[str] = None) -> int:
        """Number of live subscriptions for one provider, or for all providers"""
        if provider_name is None:
            return sum(self._active.values())
        return self._active.get(provider_name, 0)

    def _released(self, subscription: ProviderSubscription):
        self._active[subscription.provider_name] -= 1

    async def subscribe(self, callback: SampleCallback,
                        params: Optional[SubscriptionParams] = None) -> LocationSubscription:
        """
        Register every provider and route their samples to ``callback``.

        A provider that is merely unavailable is skipped as long as another
        provider starts. An authorization failure aborts the whole subscription.

        Raises:
            PermissionDeniedError: if any provider lacks location authorization
            LocationError: if no provider could be started
        """
        params = params or SubscriptionParams()
        acquired: List[ProviderSubscription] = []
        failures: List[str] = []

        try:
            for provider in self.providers:
                if self._active.get(provider.name):
                    raise LocationError(f"Provider {provider.name} is already subscribed")

                subscription = ProviderSubscription(provider, callback, params, self._released)
                try:
                    await subscription.open()
                except LocationError as e:
                    await subscription.release()
                    if isinstance(e, PermissionDeniedError):
                        raise
                    self.logger.warning(f"Provider {provider.name} unavailable: {e}")
                    failures.append(f"{provider.name}: {e}")
                    continue
                except BaseException:
                    await subscription.release()
                    raise

                self._active[provider.name] += 1
                acquired.append(subscription)
                self.logger.info(
                    f"Subscribed to provider {provider.name} "
                    f"(min interval {params.min_time_interval}s, min distance {params.min_distance}m)"
                )
        except BaseException:
            for subscription in reversed(acquired):
                await subscription.release()
            raise

        if not acquired:
            raise LocationError(f"No position provider could be started ({'; '.join(failures)})")

        return LocationSubscription(acquired)

    async def unsubscribe(self, subscription: Optional[LocationSubscription]) -> None:
        """Release all provider registrations held by ``subscription``"""
        if subscription is None:
            return
        await subscription.release()
        self.logger.info(f"Unsubscribed from providers {', '.join(subscription.provider_names)}")


async def cancel_task(task: Optional[asyncio.Task]) -> None:
    """Cancel a provider background task and wait for it to finish"""
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
