"""Supervises one streaming connection per monitored account."""

import asyncio
import logging
from typing import Dict, List, Optional

from .accounts import AccountStore
from .aggregation.engine import AggregationEngine
from .clients.bybit_ws import BybitPrivateStream
from .config.settings import LoggingConfig, ReconnectConfig
from .connection import ConnectionState
from .exceptions import AccountNotFoundError, AlreadyActiveError, AuthenticationError, SessionError
from .metrics import NotifierMetrics
from .utils.logging import (
    account_log_path,
    attach_account_log,
    detach_account_log,
    get_account_logger,
    report_fatal,
)
from .utils.retry import ReconnectPolicy, wait_for_stop

logger = logging.getLogger(__name__)


class ConnectionSupervisor:
    """
    Keeps each account's session alive with backoff and cooldown.

    Every account runs in its own task. A failure in one account never
    affects another, and nothing raised by a session reaches the caller.
    """

    def __init__(
        self,
        config: ReconnectConfig,
        store: AccountStore,
        session: BybitPrivateStream,
        engine: AggregationEngine,
        metrics: Optional[NotifierMetrics] = None,
        logging_config: Optional[LoggingConfig] = None
    ):
        self.config = config
        self.store = store
        self.session = session
        self.engine = engine
        self.metrics = metrics
        self.logging_config = logging_config

        self._connections: Dict[int, ConnectionState] = {}
        self._lock = asyncio.Lock()

    async def start(self, account_id: int) -> None:
        """
        Begin monitoring an account and return immediately.

        Raises:
            AlreadyActiveError: the account already has a connection entry
            AccountNotFoundError: the store has no such account
        """
        async with self._lock:
            if account_id in self._connections:
                raise AlreadyActiveError(account_id)

            account = await self.store.get_account(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)

            if self.logging_config:
                attach_account_log(account_id, self.logging_config)

            state = ConnectionState(account=account, policy=ReconnectPolicy(self.config))
            state.task = asyncio.create_task(
                self._run_account(state), name=f"account-{account_id}"
            )
            self._connections[account_id] = state
            self._update_gauge()

            try:
                await self.store.set_active(account_id, True)
            except Exception as e:
                logger.error(f"Failed to persist active flag for account {account_id}: {e}")

        get_account_logger(__name__, account.id, account.name).info("Monitoring started")

    async def stop(self, account_id: int) -> None:
        """Stop monitoring an account. Does nothing if it is not monitored."""
        async with self._lock:
            state = self._connections.pop(account_id, None)
            if state is None:
                return
            state.stop_event.set()
            state.running = False
            self._update_gauge()

            try:
                await self.store.set_active(account_id, False)
            except Exception as e:
                logger.error(f"Failed to clear active flag for account {account_id}: {e}")

        await state.close_websocket()
        await self.engine.discard(account_id)

        if state.task is not None and state.task is not asyncio.current_task():
            try:
                await asyncio.wait_for(asyncio.shield(state.task), timeout=self.config.stop_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Connection task for account {account_id} did not stop in time, cancelling")
                state.task.cancel()
            except Exception as e:
                logger.debug(f"Connection task for account {account_id} ended with error: {e}")

        get_account_logger(__name__, state.account.id, state.account.name).info("Monitoring stopped")
        if account_id not in self._connections:
            detach_account_log(account_id)

    async def stop_all(self) -> None:
        for account_id in list(self._connections):
            await self.stop(account_id)

    async def shutdown(self) -> None:
        """
        Stop every connection but keep the persisted active flags.

        Accounts that were monitored at shutdown are picked up again by
        :meth:`restore` on the next start.
        """
        async with self._lock:
            states = list(self._connections.values())
            self._connections.clear()
            self._update_gauge()

        for state in states:
            state.stop_event.set()
            state.running = False
            await state.close_websocket()
            await self.engine.discard(state.account_id)

        tasks = [state.task for state in states if state.task is not None]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=self.config.stop_timeout_seconds)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for state in states:
            detach_account_log(state.account_id)

    def is_active(self, account_id: int) -> bool:
        state = self._connections.get(account_id)
        return state is not None and state.running

    def active_ids(self) -> List[int]:
        return [account_id for account_id in self._connections if self.is_active(account_id)]

    async def start_all(self) -> List[int]:
        """Start every account flagged active in the store. Returns the ids started."""
        started = []
        for account in await self.store.list_accounts():
            if not account.active or account.id in self._connections:
                continue
            try:
                await self.start(account.id)
                started.append(account.id)
            except Exception as e:
                logger.error(f"Failed to start account {account.id}: {e}")
        return started

    async def restore(self) -> List[int]:
        """Restart the connections that were active when the process last ran."""
        restored = []
        for account_id in await self.store.list_active_ids():
            if account_id in self._connections:
                continue
            try:
                await self.start(account_id)
                restored.append(account_id)
            except AccountNotFoundError:
                logger.warning(f"Active connection for unknown account {account_id}, clearing it")
                await self.store.set_active(account_id, False)
            except Exception as e:
                logger.error(f"Failed to restore account {account_id}: {e}")
        if restored:
            logger.info(f"Restored {len(restored)} connection(s): {restored}")
        return restored

    async def _run_account(self, state: ConnectionState) -> None:
        try:
            await self._retry_loop(state)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state.running = False
            account = state.account
            get_account_logger(__name__, account.id, account.name).critical(
                f"Fatal error in connection task: {e}", exc_info=True
            )
            log_dir = self.logging_config.log_dir if self.logging_config else None
            report_fatal(account.name, account.id, e, account_log_path(account.id, log_dir))
            self._update_gauge()

    async def _retry_loop(self, state: ConnectionState) -> None:
        policy = state.policy
        account_logger = get_account_logger(__name__, state.account.id, state.account.name)

        while not state.stopped:
            await state.close_websocket()

            if policy.should_cool_down():
                account_logger.warning(
                    f"{policy.consecutive_failures} consecutive failures, "
                    f"cooling down for {policy.cooldown:.0f}s"
                )
                if await wait_for_stop(state.stop_event, policy.cooldown):
                    break
                policy.reset()

            try:
                await self.session.connect_and_serve(state)
            except AuthenticationError as e:
                failed = e
                account_logger.error(f"Authentication failed: {e}")
            except SessionError as e:
                failed = e
                account_logger.warning(f"Session failed: {e}")
            except Exception as e:
                failed = e
                account_logger.error(f"Unexpected error in session: {e}", exc_info=True)
                state.websocket = None
            else:
                failed = None

            if state.stopped:
                break

            if failed is None:
                policy.record_success()
                self._record_session('clean')
                account_logger.info(f"Session ended, reconnecting in {policy.initial_delay:.0f}s")
                if await wait_for_stop(state.stop_event, policy.initial_delay):
                    break
                continue

            self._record_session('auth_failed' if isinstance(failed, AuthenticationError) else 'failed')
            delay = policy.record_failure()
            account_logger.info(
                f"Reconnecting in {delay:.0f}s (attempt {policy.consecutive_failures})"
            )
            if await wait_for_stop(state.stop_event, delay):
                break

        await state.close_websocket()

    def _record_session(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_session(outcome)

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.set_active_connections(len(self.active_ids()))

    def health_check(self) -> dict:
        accounts = {}
        for account_id, state in self._connections.items():
            accounts[str(account_id)] = {
                "name": state.account.name,
                "running": state.running,
                "connected": state.websocket is not None,
                "consecutive_failures": state.policy.consecutive_failures,
                "sessions": state.sessions,
            }
        return accounts
