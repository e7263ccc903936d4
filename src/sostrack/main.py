"""
SOSTrack Main Application Entry Point

Command line entry point for the SOS tracking service. ``start``, ``run`` and
``boot`` keep the process alive while a session is tracked; ``stop`` and
``status`` act on the persisted session and return immediately.
"""

import argparse
import asyncio
import os
import signal
import sys
from typing import List, Optional

from .core.config import ConfigurationError, ConfigurationManager
from .core.database import PersistenceError, initialize_database
from .core.logging import get_logger, initialize_logging
from .models.tracking import InvalidSessionError
from .services.tracking.foreground import read_status, remove_status, status_is_fresh
from .services.tracking.location_source import LocationError, PermissionDeniedError
from .services.tracking.recovery import BOOT_COMPLETED
from .services.tracking.tracking_service import TrackingService


EXIT_OK = 0
EXIT_NOT_RUNNING = 1
EXIT_INVALID_SESSION = 2
EXIT_PERMISSION_DENIED = 3
EXIT_PERSISTENCE_ERROR = 4
EXIT_LOCATION_UNAVAILABLE = 5
EXIT_CONFIGURATION_ERROR = 6


class SOSTrackApplication:
    """Main SOSTrack application class"""

    def __init__(self, config_dir: str = "config"):
        self.config_dir = config_dir
        self.config_manager: Optional[ConfigurationManager] = None
        self.db_manager = None
        self.service: Optional[TrackingService] = None
        self.logger = None
        self.shutdown_event: Optional[asyncio.Event] = None

    def initialize(self):
        """Initialize configuration, logging, storage and the tracking service"""
        self.config_manager = ConfigurationManager(self.config_dir)
        self.config_manager.load_config()

        initialize_logging(self.config_manager.config)
        self.logger = get_logger('main')
        self.logger.debug(f"Version: {self.config_manager.get('app.version', '1.0.0')}")

        self.db_manager = initialize_database(self.config_manager.get('storage.path'))
        self.service = TrackingService(self.config_manager.config, self.db_manager)

    async def run_command(self, args: argparse.Namespace) -> int:
        """Dispatch a CLI command and map failures to exit codes"""
        try:
            if args.command == 'status':
                return self._status()
            if args.command == 'stop':
                return await self._stop()

            if args.command == 'start':
                await self.service.start_tracking({
                    'sosId': args.sos_id,
                    'sosToken': args.sos_token,
                    'identityToken': args.identity_token,
                    'userId': args.user_id,
                })
            elif args.command == 'boot':
                if not await self.service.handle_boot(args.signal):
                    return EXIT_OK
            elif args.command == 'run':
                if not await self.service.resume():
                    return EXIT_OK

            await self._serve()
            return EXIT_OK

        except InvalidSessionError as e:
            self.logger.error(str(e))
            return EXIT_INVALID_SESSION
        except PermissionDeniedError as e:
            self.logger.error(f"Location permission denied: {e}")
            return EXIT_PERMISSION_DENIED
        except LocationError as e:
            self.logger.error(f"Location unavailable: {e}")
            return EXIT_LOCATION_UNAVAILABLE
        except PersistenceError as e:
            self.logger.error(f"Persistent storage failure: {e}")
            return EXIT_PERSISTENCE_ERROR
        finally:
            await self.shutdown()

    def _status(self) -> int:
        running = self.service.is_tracking()
        print("running" if running else "stopped")
        return EXIT_OK if running else EXIT_NOT_RUNNING

    async def _stop(self) -> int:
        await self.service.stop_tracking()

        status_file = self.config_manager.get('foreground.status_file')
        if status_file:
            self._signal_tracker(status_file)

        print("stopped")
        return EXIT_OK

    def _signal_tracker(self, status_file: str):
        """Send SIGTERM to a tracker running in another process"""
        status = read_status(status_file)
        pid = status.get('pid') if status else None
        if not pid or pid == os.getpid():
            return

        heartbeat_interval = self.config_manager.get('foreground.heartbeat_interval', 30)
        if not status_is_fresh(status, heartbeat_interval):
            # The pid may belong to an unrelated process by now
            self.logger.info(f"Ignoring stale status file {status_file} (pid {pid})")
            remove_status(status_file)
            return

        try:
            os.kill(pid, signal.SIGTERM)
            self.logger.info(f"Sent SIGTERM to tracker process {pid}")
        except ProcessLookupError:
            self.logger.debug(f"Tracker process {pid} no longer running")
            remove_status(status_file)
        except PermissionError as e:
            self.logger.warning(f"Cannot signal tracker process {pid}: {e}")

    async def _serve(self):
        """Keep tracking until SIGTERM/SIGINT"""
        self.shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, self._signal_handler, signum)

        self.logger.info("SOSTrack is now running")
        await self.shutdown_event.wait()
        self.logger.info("Shutdown signal received")

    def _signal_handler(self, signum):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}")
        self.shutdown_event.set()

    async def shutdown(self):
        """Release tracking resources; the persisted session survives"""
        try:
            if self.service:
                await self.service.shutdown()
        finally:
            if self.db_manager:
                self.db_manager.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sostrack", description="SOS emergency location tracker")
    parser.add_argument("--config-dir", default="config", help="Directory holding default.yaml/config.yaml")

    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="Start tracking an SOS session")
    start.add_argument("--sos-id", default="")
    start.add_argument("--sos-token", default="")
    start.add_argument("--identity-token", default="")
    start.add_argument("--user-id", default="")

    subparsers.add_parser("stop", help="Stop tracking and clear the persisted session")
    subparsers.add_parser("status", help="Report whether a session is active")
    subparsers.add_parser("run", help="Resume a persisted session and keep tracking")

    boot = subparsers.add_parser("boot", help="Handle a boot signal")
    boot.add_argument("--signal", default=BOOT_COMPLETED, help="Boot signal name")

    return parser


async def async_main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    app = SOSTrackApplication(args.config_dir)

    try:
        app.initialize()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except PersistenceError as e:
        print(f"Persistent storage failure: {e}", file=sys.stderr)
        return EXIT_PERSISTENCE_ERROR

    return await app.run_command(args)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    try:
        return asyncio.run(async_main(argv))
    except KeyboardInterrupt:
        print("\nApplication interrupted")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
