"""
Unit tests for the command line entry point
"""

import json
import logging
import os
import signal
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from sostrack.core.database import DatabaseManager
from sostrack.main import (
    EXIT_CONFIGURATION_ERROR,
    EXIT_INVALID_SESSION,
    EXIT_NOT_RUNNING,
    EXIT_OK,
    async_main,
    build_parser,
)
from sostrack.services.tracking.session_store import SessionStore
from tests.utils import TrackTestHelper


@pytest.fixture
def config_dir(temp_dir, test_config):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level

    directory = temp_dir / "config"
    TrackTestHelper.write_config(directory, test_config)
    yield directory

    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def persisted_store(test_config):
    return SessionStore(DatabaseManager(test_config["storage"]["path"]))


class TestParser:

    def test_start_arguments(self):
        args = build_parser().parse_args([
            "start", "--sos-id", "S1", "--sos-token", "T1", "--identity-token", "I1", "--user-id", "U1"
        ])

        assert args.command == "start"
        assert (args.sos_id, args.sos_token, args.identity_token, args.user_id) == ("S1", "T1", "I1", "U1")

    def test_boot_default_signal(self):
        assert build_parser().parse_args(["boot"]).signal == "BOOT_COMPLETED"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:
    """Test commands that return without serving"""

    @pytest.mark.asyncio
    async def test_status_when_stopped(self, config_dir, capsys):
        assert await async_main(["--config-dir", str(config_dir), "status"]) == EXIT_NOT_RUNNING
        assert "stopped" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_status_when_persisted(self, config_dir, test_config, session):
        store = persisted_store(test_config)
        store.save(session)
        store.db.close()

        assert await async_main(["--config-dir", str(config_dir), "status"]) == EXIT_OK

    @pytest.mark.asyncio
    async def test_stop_clears_session(self, config_dir, test_config, session):
        store = persisted_store(test_config)
        store.save(session)

        assert await async_main(["--config-dir", str(config_dir), "stop"]) == EXIT_OK
        assert store.load() is None
        store.db.close()

    @pytest.mark.asyncio
    async def test_start_with_missing_field(self, config_dir, test_config):
        code = await async_main([
            "--config-dir", str(config_dir), "start",
            "--sos-id", "S1", "--sos-token", "", "--identity-token", "I1", "--user-id", "U1"
        ])

        assert code == EXIT_INVALID_SESSION
        store = persisted_store(test_config)
        assert store.load() is None
        store.db.close()

    @pytest.mark.asyncio
    async def test_boot_without_session_exits(self, config_dir):
        assert await async_main(["--config-dir", str(config_dir), "boot"]) == EXIT_OK

    @pytest.mark.asyncio
    async def test_invalid_configuration(self, config_dir, test_config):
        TrackTestHelper.write_config(config_dir, dict(test_config, sync={"base_url": "not-a-url"}))

        assert await async_main(["--config-dir", str(config_dir), "status"]) == EXIT_CONFIGURATION_ERROR


def write_status(test_config, pid, heartbeat_age):
    path = Path(test_config["foreground"]["status_file"])
    last_heartbeat = datetime.now(timezone.utc) - timedelta(seconds=heartbeat_age)
    path.write_text(json.dumps({"pid": pid, "sos_id": "S1", "last_heartbeat": last_heartbeat.isoformat()}))
    return path


class TestStopSignalsTracker:
    """Test how ``stop`` reaches a tracker running in another process"""

    @pytest.mark.asyncio
    async def test_live_tracker_is_signalled(self, config_dir, test_config):
        pid = os.getpid() + 1
        status_path = write_status(test_config, pid, heartbeat_age=5)

        with patch("sostrack.main.os.kill") as kill:
            assert await async_main(["--config-dir", str(config_dir), "stop"]) == EXIT_OK

        kill.assert_called_once_with(pid, signal.SIGTERM)
        assert status_path.exists()

    @pytest.mark.asyncio
    async def test_stale_status_is_not_signalled(self, config_dir, test_config):
        status_path = write_status(test_config, os.getpid() + 1, heartbeat_age=3600)

        with patch("sostrack.main.os.kill") as kill:
            assert await async_main(["--config-dir", str(config_dir), "stop"]) == EXIT_OK

        kill.assert_not_called()
        assert not status_path.exists()

    @pytest.mark.asyncio
    async def test_vanished_tracker_status_removed(self, config_dir, test_config):
        pid = os.getpid() + 1
        status_path = write_status(test_config, pid, heartbeat_age=5)

        with patch("sostrack.main.os.kill", side_effect=ProcessLookupError) as kill:
            assert await async_main(["--config-dir", str(config_dir), "stop"]) == EXIT_OK

        kill.assert_called_once_with(pid, signal.SIGTERM)
        assert not status_path.exists()
