"""Prometheus metrics module.

This module handles:
- Defining operational metrics for portal fetches and push intake
- Exposing metrics HTTP server on configurable port
"""

import logging
import time
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, start_http_server

# Configure module logger
logger = logging.getLogger(__name__)


class SolarWebMetrics:
    """Prometheus metrics for the Solar.Web exporter.

    Exposes the following metrics:
    - solarweb_day_fetches_total: Per-day fetches by result (success/failure)
    - solarweb_logons_total: Logons performed because the session had expired
    - solarweb_push_requests_total: Push intake requests by HTTP status
    - solarweb_sink_write_failures_total: Failed writes to InfluxDB
    - solarweb_scrape_success: Whether the last scrape succeeded (1=success, 0=failure)
    - solarweb_scrape_timestamp: Unix timestamp of last scrape
    - solarweb_scrape_duration_seconds: Duration of last scrape operation

    Attributes:
        port: HTTP server port (default 9120)
    """

    def __init__(self, port: int = 9120, registry: Optional[CollectorRegistry] = None):
        """Initialize the metrics.

        Args:
            port: Port to run the HTTP server on
            registry: Optional custom registry for testing. If None, uses default REGISTRY.
        """
        self.port = port
        self._registry = registry if registry is not None else REGISTRY
        self._server_started = False

        self._day_fetches = Counter(
            'solarweb_day_fetches_total',
            'Per-day chart fetches from the portal',
            ['result'],
            registry=self._registry
        )

        self._logons = Counter(
            'solarweb_logons_total',
            'Logons performed after the portal asked for one',
            registry=self._registry
        )

        self._push_requests = Counter(
            'solarweb_push_requests_total',
            'Push intake requests by response status',
            ['status'],
            registry=self._registry
        )

        self._sink_failures = Counter(
            'solarweb_sink_write_failures_total',
            'Failed batch writes to the time-series sink',
            ['source'],
            registry=self._registry
        )

        self._scrape_success = Gauge(
            'solarweb_scrape_success',
            'Whether the last scrape succeeded (1=success, 0=failure)',
            registry=self._registry
        )

        self._scrape_timestamp = Gauge(
            'solarweb_scrape_timestamp',
            'Unix timestamp of the last scrape',
            registry=self._registry
        )

        self._scrape_duration = Gauge(
            'solarweb_scrape_duration_seconds',
            'Duration of the last scrape operation in seconds',
            registry=self._registry
        )

    def record_day_fetch(self, success: bool) -> None:
        self._day_fetches.labels(result="success" if success else "failure").inc()

    def record_logon(self) -> None:
        self._logons.inc()

    def record_push_request(self, status: int) -> None:
        self._push_requests.labels(status=str(status)).inc()

    def record_sink_failure(self, source: str) -> None:
        self._sink_failures.labels(source=source).inc()

    def set_scrape_success(self, success: bool, duration: float) -> None:
        """Update operational metrics after a scrape attempt.

        Args:
            success: Whether the scrape succeeded
            duration: How long the scrape took in seconds
        """
        self._scrape_success.set(1 if success else 0)
        self._scrape_timestamp.set(time.time())
        self._scrape_duration.set(duration)

    def start(self) -> None:
        """Start the HTTP server to expose metrics.

        The server runs in a daemon thread and exposes metrics at:
        http://localhost:{port}/metrics
        """
        if self._server_started:
            logger.warning("Prometheus server already started")
            return

        logger.info(f"Starting Prometheus HTTP server on port {self.port}")
        start_http_server(self.port, registry=self._registry)
        self._server_started = True
