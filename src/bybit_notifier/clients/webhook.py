"""Webhook sink for finished notifications."""

import asyncio
import logging
from typing import List, Optional, Set

import aiohttp

from ..accounts import MonitoredAccount
from ..config.settings import NotificationConfig
from ..formatter import NotificationFormatter
from ..metrics import NotifierMetrics
from ..utils.logging import get_account_logger

logger = logging.getLogger(__name__)

DELIVERED_STATUSES = (200, 204)


def split_long_message(text: str, max_len: int) -> List[str]:
    """
    Split text so that no part exceeds ``max_len`` characters.

    Cuts on blank lines first, then on line breaks, and hard-cuts single
    lines that are still too long.
    """
    text = (text or "").strip()
    if not text:
        return []
    if len(text) <= max_len:
        return [text]

    parts: List[str] = []
    buf = ""

    for block in text.split("\n\n"):
        candidate = f"{buf}\n\n{block}" if buf else block
        if len(candidate) <= max_len:
            buf = candidate
            continue

        if buf:
            parts.append(buf)
            buf = ""

        if len(block) <= max_len:
            buf = block
            continue

        line_buf = ""
        for line in block.splitlines():
            candidate = f"{line_buf}\n{line}" if line_buf else line
            if len(candidate) <= max_len:
                line_buf = candidate
            else:
                if line_buf:
                    parts.append(line_buf)
                while len(line) > max_len:
                    parts.append(line[:max_len])
                    line = line[max_len:]
                line_buf = line
        if line_buf:
            parts.append(line_buf)

    if buf:
        parts.append(buf)

    return [part for part in parts if part.strip()]


class WebhookNotifier:
    """
    Posts notifications to each account's webhook.

    Delivery is best effort: failures are logged and the message is dropped.
    """

    def __init__(
        self,
        config: NotificationConfig,
        formatter: NotificationFormatter,
        metrics: Optional[NotifierMetrics] = None
    ):
        self.config = config
        self.formatter = formatter
        self.metrics = metrics
        self.session: Optional[aiohttp.ClientSession] = None
        self._tasks: Set[asyncio.Task] = set()

        self.stats = {
            'messages_sent': 0,
            'messages_failed': 0,
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            )
        return self.session

    async def send(self, account: MonitoredAccount, text: str, kind: str = "notification") -> bool:
        """Wrap ``text`` with header and timestamp and post it. Returns True if every part was accepted."""
        if not account.webhook_url:
            return False

        account_logger = get_account_logger(__name__, account.id, account.name)
        message = self.formatter.wrap(text)
        delivered = True

        for part in split_long_message(message, self.config.max_message_length):
            if not await self._post(account.webhook_url, part, account_logger):
                delivered = False

        if delivered:
            self.stats['messages_sent'] += 1
        else:
            self.stats['messages_failed'] += 1
            account_logger.warning(f"Webhook delivery failed, notification dropped: {text}")

        if self.metrics:
            self.metrics.record_notification(kind, delivered)
        return delivered

    async def _post(self, url: str, content: str, account_logger: logging.LoggerAdapter) -> bool:
        try:
            async with self._get_session().post(url, json={"content": content}) as response:
                if response.status in DELIVERED_STATUSES:
                    return True
                account_logger.error(f"Webhook returned status code {response.status}")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            account_logger.error(f"Webhook request failed: {e}")
            return False

    def send_nowait(self, account: MonitoredAccount, text: str, kind: str = "notification") -> None:
        """Deliver in the background without blocking the caller."""
        task = asyncio.create_task(self.send(account, text, kind))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background notification failed: {task.exception()}")

    async def close(self):
        """Wait for background deliveries and release the HTTP session."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def get_stats(self) -> dict:
        return dict(self.stats, pending=len(self._tasks))
