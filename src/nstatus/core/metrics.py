"""
Prometheus metrics collection and optional HTTP exposition.

Module-level metric objects are shared by every component.
``BaseService.run_forever()`` records refresh cycle counts, durations and
failure streaks; components add their own values through ``set_gauge()`` and
``inc_counter()``.

The ``MetricsServer`` exposes a Prometheus endpoint via aiohttp. It is off
by default: a desktop client only runs it when ``MetricsConfig.enabled`` is
set, typically for debugging relay behaviour over a long session.

Architecture:
    CLIENT_INFO:               Static metadata set once at startup.
    COMPONENT_GAUGE:           Point-in-time values (timeline size, ...).
    COMPONENT_COUNTER:         Cumulative totals (relays skipped, ...).
    CYCLE_DURATION_SECONDS:    Histogram of refresh cycle durations.
    RELAY_REQUEST_SECONDS:     Histogram of per-relay request latency.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint."""

    enabled: bool = Field(default=False, description="Record metrics and serve the endpoint")
    port: int = Field(
        default=9464, ge=1024, le=65535, description="TCP port of the scrape endpoint"
    )
    host: str = Field(default="127.0.0.1", description="Address the endpoint listens on")
    path: str = Field(default="/metrics", description="URL path of the scrape endpoint")


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

CLIENT_INFO = Info(
    "nstatus_client",
    "Client information and metadata",
)

CYCLE_DURATION_SECONDS = Histogram(
    "nstatus_cycle_duration_seconds",
    "Duration of a refresh cycle in seconds",
    ["component"],
    buckets=(0.5, 1, 2, 5, 10, 20, 30, 60, 120),
)

RELAY_REQUEST_SECONDS = Histogram(
    "nstatus_relay_request_seconds",
    "Duration of a single relay request in seconds",
    ["component", "outcome"],
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 20),
)

# run_forever() writes the gauges consecutive_failures and last_cycle_timestamp
# and the counters cycles_success, cycles_failed and errors_<ExceptionName>.
COMPONENT_GAUGE = Gauge(
    "nstatus_component_gauge",
    "Component gauge values (point-in-time state)",
    ["component", "name"],
)

COMPONENT_COUNTER = Counter(
    "nstatus_component_counter",
    "Component counter values (cumulative totals)",
    ["component", "name"],
)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True))
        await server.start()
        # ... session runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Start listening for scrape requests (no-op when disabled or running).

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled or self._runner is not None:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner

    async def stop(self) -> None:
        """Stop the HTTP server. Idempotent."""
        if self._runner is not None:
            runner, self._runner = self._runner, None
            await runner.cleanup()

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )
