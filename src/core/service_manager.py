# External libs
import asyncio
import logging
import os
from typing import Optional

# Internal libs
from core.services.load_test_manager import LoadTestManager, load_test_manager

logger = logging.getLogger(__name__)

class ServiceManager:

    def __init__(self, manager: Optional[LoadTestManager] = None):
        self.manager = manager or load_test_manager

    async def start_services(self):
        """Bind the event hub to the running loop and prepare working directories."""

        logger.info("Starting background services...")
        loop = asyncio.get_running_loop()

        # Init Event Hub
        self.manager.event_hub.init(loop)

        # Generator configs and reports are written here
        os.makedirs(self.manager.work_dir, exist_ok=True)

        logger.info("Background services started.")

    async def stop_services(self, timeout: Optional[float] = None):
        """Stop every running load test and wait (bounded) for the generators to exit."""

        running = self.manager.list_running()
        if running:
            logger.info(f"Stopping {len(running)} running load test(s)...")

        await self.manager.shutdown(timeout)

        logger.info("Background services stopped.")

service_manager = ServiceManager()
