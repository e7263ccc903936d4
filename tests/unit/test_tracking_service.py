"""
Unit tests for the tracking service wiring
"""

import copy

import pytest
import pytest_asyncio

from sostrack.models.tracking import InvalidSessionError
from sostrack.services.tracking.foreground import NullForeground, StatusFileForeground
from sostrack.services.tracking.providers import ReplayProvider
from sostrack.services.tracking.sync_client import RestLiveLocationTransport
from sostrack.services.tracking.tracking_service import TrackingService
from tests.mocks.tracking_mocks import FakePositionProvider, FakeTransport


REQUEST = {"sosId": "S1", "sosToken": "T1", "identityToken": "I1", "userId": "U1"}


@pytest_asyncio.fixture
async def service(test_config, database):
    svc = TrackingService(
        test_config,
        database,
        providers=[FakePositionProvider()],
        transport=FakeTransport(),
        foreground=NullForeground(),
    )
    yield svc
    await svc.shutdown()


class TestTrackingService:
    """Test the external command surface"""

    def test_builds_components_from_config(self, test_config, database):
        svc = TrackingService(test_config, database)

        assert isinstance(svc.location_source.providers[0], ReplayProvider)
        assert isinstance(svc.sync_client.transport, RestLiveLocationTransport)
        assert svc.sync_client.transport.base_url == "https://sos-test.firebaseio.com"
        assert svc.sync_client.max_concurrent == 2
        assert isinstance(svc.foreground, StatusFileForeground)
        assert svc.controller.params.min_time_interval == 0.0

    @pytest.mark.asyncio
    async def test_start_and_status(self, service):
        session = await service.start_tracking(REQUEST)

        assert session.sos_id == "S1"
        assert service.is_tracking() is True
        assert service.get_status()["persisted"] is True

    @pytest.mark.asyncio
    async def test_invalid_start_request(self, service):
        with pytest.raises(InvalidSessionError):
            await service.start_tracking(dict(REQUEST, userId=""))

        assert service.is_tracking() is False

    @pytest.mark.asyncio
    async def test_stop(self, service):
        await service.start_tracking(REQUEST)

        await service.stop_tracking()

        assert service.is_tracking() is False
        assert service.get_status()["state"] == "idle"

    @pytest.mark.asyncio
    async def test_boot_and_resume(self, service):
        await service.start_tracking(REQUEST)
        await service.controller.shutdown()

        assert await service.handle_boot() is True
        assert await service.resume() is True
        assert service.controller.is_active

    @pytest.mark.asyncio
    async def test_stop_command_clears_remote_of_running_tracker(self, test_config, database):
        config = copy.deepcopy(test_config)
        config['sync']['clear_remote_on_stop'] = True
        running = TrackingService(config, database, providers=[FakePositionProvider()],
                                  transport=FakeTransport(), foreground=NullForeground())
        await running.start_tracking(REQUEST)

        # The stop command runs in its own process with an idle controller
        cli_transport = FakeTransport(remove_latency=0.01)
        cli = TrackingService(config, database, providers=[FakePositionProvider()],
                              transport=cli_transport, foreground=NullForeground())
        await cli.stop_tracking()
        await cli.shutdown()

        assert cli_transport.removes == [("U1", "I1")]
        assert cli.is_tracking() is False
        await running.shutdown()
