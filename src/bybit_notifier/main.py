"""Bybit notifier service - watches private streams and posts notifications."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Iterable, Optional

from .accounts import AccountStore, JsonAccountStore
from .aggregation.engine import AggregationEngine
from .clients.bybit_ws import BybitPrivateStream
from .clients.webhook import WebhookNotifier
from .config.settings import NotifierSettings, load_settings
from .formatter import NotificationFormatter
from .health import HealthCheckServer
from .metrics import NotifierMetrics
from .router import MessageRouter
from .supervisor import ConnectionSupervisor
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


class NotifierService:
    """Owns every collaborator and the lifecycle of all account connections."""

    def __init__(self, settings: NotifierSettings, store: Optional[AccountStore] = None):
        self.settings = settings
        self.store = store or JsonAccountStore(settings.storage.accounts_file)
        self.metrics = NotifierMetrics()

        self.formatter = NotificationFormatter(settings.aggregation, settings.notifications)
        self.notifier = WebhookNotifier(settings.notifications, self.formatter, self.metrics)
        self.engine = AggregationEngine(settings.aggregation, self.formatter, self.notifier)
        self.router = MessageRouter(self.engine, self.metrics)
        self.session = BybitPrivateStream(settings.bybit, self.router)
        self.supervisor = ConnectionSupervisor(
            settings.reconnect,
            self.store,
            self.session,
            self.engine,
            metrics=self.metrics,
            logging_config=settings.logging
        )
        self.engine.is_active = self.supervisor.is_active

        self.health_server: Optional[HealthCheckServer] = None
        self._shutdown_event = asyncio.Event()

        logger.info("Notifier service initialized")

    async def restore_connections(self):
        return await self.supervisor.restore()

    async def start_all_connections(self):
        return await self.supervisor.start_all()

    async def start_accounts(self, account_ids: Iterable[int]):
        for account_id in account_ids:
            if self.supervisor.is_active(account_id):
                continue
            try:
                await self.supervisor.start(account_id)
            except Exception as e:
                logger.error(f"Failed to start account {account_id}: {e}")

    async def run(self, start_all: bool = False, account_ids: Iterable[int] = ()):
        """Restore connections, start the requested ones and serve until a shutdown signal."""
        logger.info("Starting notifier service")
        self._setup_signal_handlers()

        if self.settings.health.enabled:
            self.health_server = HealthCheckServer(
                self, host=self.settings.health.host, port=self.settings.health.port
            )
            await self.health_server.start()

        try:
            await self.restore_connections()
            if start_all:
                await self.start_all_connections()
            await self.start_accounts(account_ids)

            if not self.supervisor.active_ids():
                logger.warning("No accounts are being monitored")

            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    def request_shutdown(self):
        self._shutdown_event.set()

    async def shutdown(self):
        logger.info("Shutting down notifier service")
        await self.supervisor.shutdown()
        await self.engine.close()
        await self.notifier.close()
        if self.health_server:
            await self.health_server.stop()
            self.health_server = None
        logger.info("Notifier service stopped")

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(self._on_signal, signum))

    def _on_signal(self, signum):
        logger.info(f"Received signal {signum}, initiating shutdown")
        self._shutdown_event.set()

    def health_check(self) -> dict:
        accounts = self.supervisor.health_check()
        running = [info["running"] for info in accounts.values()]

        if running and not all(running):
            status = "degraded" if any(running) else "unhealthy"
        else:
            status = "healthy"

        return {
            "service": self.settings.service_name,
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "accounts": accounts,
            "engine": self.engine.get_stats(),
            "notifier": self.notifier.get_stats(),
            "router": dict(self.router.stats),
        }


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")
    settings = load_settings(config_file if os.path.exists(config_file) else None)
    setup_logging(settings.logging, settings.service_name)

    service = NotifierService(settings)
    try:
        await service.run(start_all=os.getenv("START_ALL", "").lower() in ("1", "true", "yes"))
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
