"""Runs one ConnectionManager per market concurrently."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .clients.finnhub_ws import ConnectFactory, ConnectionManager, SleepFunc
from .config.settings import MarketConfig, StreamerConfig
from .credentials import CredentialProvider
from .errors import StartupError, StreamConnectError, SubscribeError
from .handlers import TradeHandler
from .market_hours import is_trading
from .utils.retry import exponential_backoff


logger = logging.getLogger(__name__)


class FailurePolicy(Enum):
    """What to do when one market's stream task dies with an error."""
    FAIL_FAST = "fail_fast"   # stop every market and propagate the error
    ISOLATE = "isolate"       # log it and keep the other markets running


class MultiMarketCoordinator:
    """
    Owns one ConnectionManager per configured market.

    ``run()`` brings every market up (connect + subscribe, with a few startup
    retries), streams each in its own task and waits for the shutdown event.
    On shutdown every manager is closed and every task awaited.
    """

    def __init__(
        self,
        config: StreamerConfig,
        credential_provider: CredentialProvider,
        connect_factory: Optional[ConnectFactory] = None,
        sleep: Optional[SleepFunc] = None,
        session_gate: Callable[[], bool] = is_trading
    ):
        self.config = config
        self.credential_provider = credential_provider
        self.failure_policy = FailurePolicy(config.coordinator.failure_policy)
        self._connect_factory = connect_factory
        self._sleep = sleep
        self._session_gate = session_gate

        self.managers: Dict[str, ConnectionManager] = {}
        self._pending_handlers: List[tuple] = []
        self._tasks: Dict[str, asyncio.Task] = {}
        self._failures: Dict[str, BaseException] = {}
        self._started = False

    def add_handler(self, handler: TradeHandler, market: Optional[str] = None) -> 'MultiMarketCoordinator':
        """Register a handler for one market, or for every market when ``market`` is None."""
        if self._started:
            raise RuntimeError("Handlers must be registered before the coordinator starts")
        if market is not None and market not in self._market_names():
            raise KeyError(f"Unknown market: {market}")
        self._pending_handlers.append((market, handler))
        return self

    async def start(self) -> None:
        """Create, connect and subscribe every market, then launch the stream tasks."""
        if self._started:
            raise RuntimeError("Coordinator already started")
        self._started = True

        try:
            for market in self.config.markets:
                manager = await self._create_manager(market)
                self.managers[market.name] = manager
                await self._bring_up(manager)
        except BaseException:
            await self._close_managers()
            raise

        for name, manager in self.managers.items():
            self._tasks[name] = asyncio.create_task(manager.stream(), name=f"stream-{name}")

        logger.info(f"All streamers are running: {list(self.managers)}")
        for market in self.config.markets:
            logger.info(f"{market.name} symbols: {market.symbols}")

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """
        Start every market and block until ``shutdown_event`` is set.

        Raises:
            StartupError: if a market could not be brought up
            Exception: the stream error, under the fail-fast policy
        """
        await self.start()

        shutdown_task = asyncio.create_task(shutdown_event.wait(), name="shutdown-wait")
        fatal: Optional[BaseException] = None
        try:
            fatal = await self._supervise(shutdown_task)
        finally:
            shutdown_task.cancel()
            await self.stop()

        if fatal is not None:
            raise fatal

    async def stop(self) -> None:
        """Close every manager and wait for the stream tasks to finish."""
        await self._close_managers()

        tasks = list(self._tasks.values())
        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for name, result in zip(self._tasks, results):
                if isinstance(result, Exception) and name not in self._failures:
                    logger.error(f"{name} stream ended with error during shutdown: {result}")

        logger.info("All streams stopped")

    async def health_check(self) -> Dict[str, Any]:
        """Aggregate per-market health."""
        components = {}
        for name, manager in self.managers.items():
            components[name] = await manager.health_check()

        statuses = [component['status'] for component in components.values()]
        if not statuses or any(status == 'unhealthy' for status in statuses):
            status = 'unhealthy'
        elif any(status == 'degraded' for status in statuses):
            status = 'degraded'
        else:
            status = 'healthy'

        return {
            'status': status,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'failure_policy': self.failure_policy.value,
            'failed_markets': sorted(self._failures),
            'components': components,
        }

    # ============================================================
    # Internals
    # ============================================================

    async def _supervise(self, shutdown_task: asyncio.Task) -> Optional[BaseException]:
        """Wait for shutdown or for stream tasks to end. Returns a fatal error, if any."""
        running = {task: name for name, task in self._tasks.items()}

        while True:
            done, _ = await asyncio.wait(
                {shutdown_task, *running},
                return_when=asyncio.FIRST_COMPLETED
            )

            if shutdown_task in done:
                logger.info("Received shutdown signal, closing connections...")
                return None

            for task in done:
                name = running.pop(task)
                error = None if task.cancelled() else task.exception()
                if error is None:
                    logger.warning(f"{name} stream exited")
                    continue

                self._failures[name] = error
                logger.error(f"{name} streaming error: {error}", exc_info=error)
                if self.failure_policy is FailurePolicy.FAIL_FAST:
                    return error
                await self.managers[name].close()

            if not running:
                logger.error("No streams left running")
                return next(reversed(list(self._failures.values())), None)

    async def _create_manager(self, market: MarketConfig) -> ConnectionManager:
        credential = await self.credential_provider.get_credential(market.account)

        manager = ConnectionManager(
            name=market.name,
            config=self.config.finnhub,
            symbols=market.symbols,
            credential=credential,
            reconnect_config=self.config.reconnect,
            session_gate=self._session_gate if market.check_session else None,
            connect_factory=self._connect_factory,
            sleep=self._sleep
        )

        for target, handler in self._pending_handlers:
            if target is None or target == market.name:
                manager.add_handler(handler)

        return manager

    async def _bring_up(self, manager: ConnectionManager) -> None:
        retry = self.config.retry

        async def connect_and_subscribe():
            # connect() drops any half-subscribed socket from a previous attempt
            await manager.connect()
            await manager.subscribe()

        try:
            await exponential_backoff(
                connect_and_subscribe,
                max_attempts=retry.max_attempts,
                initial_delay=retry.initial_backoff_seconds,
                max_delay=retry.max_backoff_seconds,
                backoff_factor=retry.backoff_multiplier,
                jitter=retry.jitter,
                exceptions=(StreamConnectError, SubscribeError),
                sleep=self._sleep
            )
        except (StreamConnectError, SubscribeError) as e:
            raise StartupError(f"Error starting {manager.name} streamer: {e}") from e

    async def _close_managers(self) -> None:
        for manager in self.managers.values():
            await manager.close()

    def _market_names(self) -> List[str]:
        return [market.name for market in self.config.markets]
