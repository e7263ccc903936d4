"""
Foreground execution mode

While a session is tracked the process advertises itself as a long-running
supervised task: a status file carries the pid, the session id, the
notification text and a heartbeat refreshed on a fixed interval. Process
supervisors and the ``stop`` command read the same file.
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ...models.tracking import TrackingSession
from .location_source import cancel_task


class ForegroundKeeper(ABC):
    """Liveness signal for the persistent execution mode"""

    @abstractmethod
    async def enter(self, session: TrackingSession) -> None:
        """Enter (or refresh) foreground mode for ``session``"""

    @abstractmethod
    async def exit(self) -> None:
        """Leave foreground mode; safe to call when not entered"""

    @property
    @abstractmethod
    def active(self) -> bool:
        ...


class NullForeground(ForegroundKeeper):
    """Foreground mode without an external signal"""

    def __init__(self):
        self._active = False

    async def enter(self, session: TrackingSession) -> None:
        self._active = True

    async def exit(self) -> None:
        self._active = False

    @property
    def active(self) -> bool:
        return self._active


def read_status(path) -> Optional[Dict[str, Any]]:
    """Read a status file written by StatusFileForeground"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logging.getLogger(__name__).warning(f"Unreadable status file {path}: {e}")
        return None


def status_is_fresh(status: Dict[str, Any], heartbeat_interval: float,
                    now: Optional[datetime] = None) -> bool:
    """True if the heartbeat is recent enough for the writer to still be alive"""
    try:
        last_heartbeat = datetime.fromisoformat(status['last_heartbeat'])
    except (KeyError, TypeError, ValueError):
        return False

    now = now or datetime.now(timezone.utc)
    # Three missed heartbeats mark the tracker as gone
    return (now - last_heartbeat).total_seconds() <= heartbeat_interval * 3


def remove_status(path) -> None:
    """Delete a status file left behind by a tracker that is no longer running"""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logging.getLogger(__name__).warning(f"Could not remove status file {path}: {e}")


class StatusFileForeground(ForegroundKeeper):
    """Heartbeat status file used as the external liveness signal"""

    def __init__(self, status_file: str, heartbeat_interval: float = 30.0,
                 title: str = "SOS Active",
                 text: str = "Emergency tracking is active. Your location is being shared."):
        self.status_file = Path(status_file)
        self.heartbeat_interval = heartbeat_interval
        self.title = title
        self.text = text
        self.logger = logging.getLogger(__name__)

        self._status: Optional[Dict[str, Any]] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._status is not None

    async def enter(self, session: TrackingSession) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._status = {
            'pid': os.getpid(),
            'sos_id': session.sos_id,
            'title': self.title,
            'text': self.text,
            'started_at': self._status['started_at'] if self._status else now,
            'last_heartbeat': now,
        }
        self._write()

        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self.logger.info(f"{self.title}: {self.text}")

    async def exit(self) -> None:
        await cancel_task(self._heartbeat_task)
        self._heartbeat_task = None

        if self._status is None:
            return
        self._status = None

        try:
            self.status_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove status file {self.status_file}: {e}")
        self.logger.info("Left foreground mode")

    def _write(self):
        self.status_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.status_file.with_suffix(self.status_file.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._status, f)
        os.replace(tmp_path, self.status_file)

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if self._status is None:
                return
            self._status['last_heartbeat'] = datetime.now(timezone.utc).isoformat()
            try:
                self._write()
            except OSError as e:
                self.logger.warning(f"Heartbeat write failed: {e}")
