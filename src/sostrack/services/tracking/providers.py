"""
Position Providers

Concrete providers behind the Location Source:
- GPSProvider: NMEA sentences from a serial GNSS receiver
- NetworkProvider: periodic HTTP geolocation lookups
- ReplayProvider: plays back a recorded track (CSV or JSON lines)
"""

import asyncio
import csv
import errno
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import serial_asyncio

from ...models.tracking import PositionSample, SubscriptionParams
from .location_source import (
    LocationError,
    PermissionDeniedError,
    PositionProvider,
    SampleCallback,
    cancel_task,
)
from .nmea import NMEAParser


_PERMISSION_ERRNOS = (errno.EACCES, errno.EPERM)


def _is_permission_error(error: BaseException) -> bool:
    return isinstance(error, PermissionError) or getattr(error, 'errno', None) in _PERMISSION_ERRNOS


class GPSProvider(PositionProvider):
    """Satellite provider reading NMEA from a serial receiver"""

    def __init__(self, port: str = '/dev/ttyUSB0', baudrate: int = 9600, name: str = 'gps'):
        super().__init__(name)
        self.port = port
        self.baudrate = baudrate
        self.parser = NMEAParser()
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.read_task: Optional[asyncio.Task] = None
        self.sentence_count = 0

    async def open(self, emit: SampleCallback, params: SubscriptionParams) -> None:
        self.logger.info(f"Connecting to GNSS receiver on {self.port} @ {self.baudrate} baud")

        try:
            self.reader, self.writer = await serial_asyncio.open_serial_connection(
                url=self.port,
                baudrate=self.baudrate
            )
        except OSError as e:
            if _is_permission_error(e):
                raise PermissionDeniedError(f"No access to {self.port}: {e}") from e
            raise LocationError(f"Cannot open {self.port}: {e}") from e

        self.read_task = asyncio.create_task(self._read_loop(emit))

    async def close(self) -> None:
        await cancel_task(self.read_task)
        self.read_task = None

        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except OSError as e:
                self.logger.debug(f"Error closing serial port: {e}")
            self.writer = None
            self.reader = None

    async def _read_loop(self, emit: SampleCallback) -> None:
        try:
            while True:
                line = await self.reader.readline()
                if not line:
                    self.logger.warning(f"GNSS receiver on {self.port} closed the connection")
                    break

                self.sentence_count += 1
                fix = self.parser.parse(line.decode('ascii', errors='ignore'))
                if not fix:
                    continue
                try:
                    sample = PositionSample(
                        latitude=fix.latitude,
                        longitude=fix.longitude,
                        provider=self.name,
                    )
                except ValueError as e:
                    self.logger.debug(f"Discarding invalid fix: {e}")
                    continue
                emit(sample)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"GNSS read loop error: {e}", exc_info=True)
        finally:
            self.logger.info(f"GNSS read loop stopped ({self.sentence_count} sentences)")


def _lookup(data: Dict[str, Any], path: str) -> Any:
    current: Any = data
    for key in path.split('.'):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


class NetworkProvider(PositionProvider):
    """Network-based provider polling an HTTP geolocation endpoint"""

    def __init__(self, url: str, method: str = 'GET', poll_interval: float = 10.0,
                 headers: Optional[Dict[str, str]] = None, body: Optional[Dict[str, Any]] = None,
                 latitude_key: str = 'latitude', longitude_key: str = 'longitude',
                 accuracy_key: Optional[str] = 'accuracy', timeout: float = 10.0,
                 name: str = 'network'):
        super().__init__(name)
        self.url = url
        self.method = method.upper()
        self.poll_interval = poll_interval
        self.headers = headers or {}
        self.body = body
        self.latitude_key = latitude_key
        self.longitude_key = longitude_key
        self.accuracy_key = accuracy_key
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self.poll_task: Optional[asyncio.Task] = None

    async def open(self, emit: SampleCallback, params: SubscriptionParams) -> None:
        self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))

        # First lookup doubles as the authorization check
        try:
            first = await self._lookup_position()
        except PermissionDeniedError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, TypeError, ValueError) as e:
            self.logger.warning(f"Initial network position lookup failed: {e}")
            first = None

        if first:
            emit(first)

        interval = max(self.poll_interval, params.min_time_interval)
        self.poll_task = asyncio.create_task(self._poll_loop(emit, interval))

    async def close(self) -> None:
        await cancel_task(self.poll_task)
        self.poll_task = None

        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def _lookup_position(self) -> Optional[PositionSample]:
        async with self.session.request(self.method, self.url, headers=self.headers,
                                        json=self.body) as response:
            if response.status in (401, 403):
                raise PermissionDeniedError(
                    f"Geolocation endpoint refused access (HTTP {response.status})"
                )
            response.raise_for_status()
            data = await response.json(content_type=None)

        latitude = _lookup(data, self.latitude_key)
        longitude = _lookup(data, self.longitude_key)
        if latitude is None or longitude is None:
            self.logger.debug(f"Geolocation response without coordinates: {data}")
            return None

        accuracy = _lookup(data, self.accuracy_key) if self.accuracy_key else None
        return PositionSample(
            latitude=float(latitude),
            longitude=float(longitude),
            provider=self.name,
            accuracy=float(accuracy) if accuracy is not None else None,
        )

    async def _poll_loop(self, emit: SampleCallback, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                sample = await self._lookup_position()
                if sample:
                    emit(sample)
            except asyncio.CancelledError:
                raise
            except PermissionDeniedError as e:
                self.logger.error(f"Network provider lost authorization: {e}")
                return
            except Exception as e:
                self.logger.warning(f"Network position lookup failed: {e}")


def load_track(path: Path) -> List[Tuple[float, float]]:
    """Read (latitude, longitude) pairs from a CSV or JSON-lines file"""
    points: List[Tuple[float, float]] = []

    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() in ('.jsonl', '.json'):
            for line in f:
                line = line.strip()
                if line:
                    record = json.loads(line)
                    points.append((float(record['latitude']), float(record['longitude'])))
        else:
            for row in csv.reader(f):
                if not row or row[0].strip().lower() in ('latitude', 'lat'):
                    continue
                points.append((float(row[0]), float(row[1])))

    return points


class ReplayProvider(PositionProvider):
    """Plays back a recorded track, one point per interval"""

    def __init__(self, path: str, interval: float = 1.0, loop: bool = False, name: str = 'replay'):
        super().__init__(name)
        self.path = Path(path)
        self.interval = interval
        self.loop = loop
        self.replay_task: Optional[asyncio.Task] = None

    async def open(self, emit: SampleCallback, params: SubscriptionParams) -> None:
        try:
            points = load_track(self.path)
        except PermissionError as e:
            raise PermissionDeniedError(f"No access to track {self.path}: {e}") from e
        except (OSError, ValueError, KeyError, IndexError) as e:
            raise LocationError(f"Cannot load track {self.path}: {e}") from e

        if not points:
            raise LocationError(f"Track {self.path} contains no points")

        self.logger.info(f"Replaying {len(points)} points from {self.path}")
        self.replay_task = asyncio.create_task(self._replay(emit, points))

    async def close(self) -> None:
        await cancel_task(self.replay_task)
        self.replay_task = None

    async def _replay(self, emit: SampleCallback, points: List[Tuple[float, float]]) -> None:
        while True:
            for latitude, longitude in points:
                emit(PositionSample(latitude=latitude, longitude=longitude, provider=self.name))
                await asyncio.sleep(self.interval)
            if not self.loop:
                self.logger.info("Track replay finished")
                return


def build_provider(config: Dict[str, Any]) -> PositionProvider:
    """Create a provider from its configuration entry"""
    options = dict(config)
    provider_type = options.pop('type', None)

    if provider_type == 'gps':
        return GPSProvider(**options)
    if provider_type == 'network':
        return NetworkProvider(**options)
    if provider_type == 'replay':
        return ReplayProvider(**options)

    raise ValueError(f"Unknown provider type: {provider_type}")
