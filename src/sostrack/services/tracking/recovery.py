"""
Boot recovery for interrupted tracking sessions.
"""

import logging

from .session_controller import SessionController
from .session_store import SessionStore


BOOT_COMPLETED = "BOOT_COMPLETED"
QUICKBOOT_POWERON = "QUICKBOOT_POWERON"
COLD_START = "COLD_START"

BOOT_SIGNALS = frozenset({BOOT_COMPLETED, QUICKBOOT_POWERON, COLD_START})


class RecoveryTrigger:
    """Restarts tracking after a reboot when a session is still persisted"""

    def __init__(self, store: SessionStore, controller: SessionController):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.controller = controller

    async def handle_boot(self, signal_name: str = BOOT_COMPLETED) -> bool:
        """
        Handle a boot signal; the store is only read, never written.

        Returns:
            True if a persisted session is being tracked afterwards
        """
        if signal_name not in BOOT_SIGNALS:
            self.logger.debug(f"Ignoring non-boot signal {signal_name}")
            return False

        self.logger.info(f"Boot signal {signal_name} received, checking SOS state")

        session = self.store.load()
        if session is None:
            self.logger.info("No active SOS session to recover")
            return False

        self.logger.info(f"Active SOS session {session.sos_id} found, restarting tracking")
        return await self.controller.resume()
