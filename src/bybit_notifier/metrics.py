"""Prometheus metrics for the notifier."""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)


class NotifierMetrics:
    """
    Metrics collection for the notifier.

    Each instance owns its registry so several services (or tests) can
    live in one process.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.frames_total = Counter(
            'notifier_frames_total',
            'Frames received from the private stream',
            ['kind'],
            registry=self.registry
        )

        self.notifications_total = Counter(
            'notifier_notifications_total',
            'Notifications delivered to the webhook sink',
            ['kind', 'outcome'],
            registry=self.registry
        )

        self.sessions_total = Counter(
            'notifier_sessions_total',
            'Finished streaming sessions',
            ['outcome'],
            registry=self.registry
        )

        self.active_connections = Gauge(
            'notifier_active_connections',
            'Accounts currently being monitored',
            registry=self.registry
        )

        logger.info("Prometheus metrics initialized")

    def record_frame(self, kind: str):
        self.frames_total.labels(kind=kind).inc()

    def record_notification(self, kind: str, delivered: bool):
        self.notifications_total.labels(kind=kind, outcome='sent' if delivered else 'failed').inc()

    def record_session(self, outcome: str):
        self.sessions_total.labels(outcome=outcome).inc()

    def set_active_connections(self, count: int):
        self.active_connections.set(count)

    def render(self) -> bytes:
        return generate_latest(self.registry)
