"""Market Streamer Service - live crypto and stock trades from Finnhub."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from .config.settings import StreamerConfig, load_config
from .coordinator import MultiMarketCoordinator
from .credentials import CredentialProvider, StaticCredentialProvider
from .handlers import create_trade_handler
from .health import HealthCheckServer
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)


class StreamerService:
    """Main streamer service: one stream per market, printed to the console."""

    def __init__(
        self,
        config_file: str = "config/local.yaml",
        config: Optional[StreamerConfig] = None,
        credential_provider: Optional[CredentialProvider] = None,
        **coordinator_options
    ):
        self.config = config or load_config(config_file)
        self.credential_provider = credential_provider or StaticCredentialProvider(
            {market.account: self.config.finnhub.api_key for market in self.config.markets}
        )
        self.coordinator: Optional[MultiMarketCoordinator] = None
        self.health_server: Optional[HealthCheckServer] = None
        self._coordinator_options = coordinator_options
        self._shutdown_event = asyncio.Event()

        setup_logging(self.config.logging)
        logger.info("Market Streamer Service initialized")

    async def start(self):
        """Start the streamer service and block until shutdown."""
        logger.info("Starting Market Streamer Service")

        self.coordinator = MultiMarketCoordinator(
            self.config,
            self.credential_provider,
            **self._coordinator_options
        )
        for market in self.config.markets:
            self.coordinator.add_handler(create_trade_handler(market.asset_class), market=market.name)

        self._setup_signal_handlers()

        if self.config.health.enabled:
            self.health_server = HealthCheckServer(
                self.health_check,
                host=self.config.health.host,
                port=self.config.health.port
            )
            await self.health_server.start()

        try:
            await self.coordinator.run(self._shutdown_event)
        finally:
            if self.health_server:
                await self.health_server.stop()

        logger.info("Market Streamer Service stopped")

    def shutdown(self):
        """Request a graceful shutdown."""
        self._shutdown_event.set()

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def health_check(self) -> dict:
        """Perform health check."""
        health_status = {
            "service": "market-streamer",
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {}
        }

        if self.coordinator is None:
            health_status["status"] = "unhealthy"
            return health_status

        coordinator_health = await self.coordinator.health_check()
        health_status["components"]["coordinator"] = coordinator_health
        health_status["status"] = coordinator_health["status"]

        return health_status


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")

    try:
        service = StreamerService(config_file)
        await service.start()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
