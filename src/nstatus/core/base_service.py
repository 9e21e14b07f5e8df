"""
Abstract base class for long-lived nstatus services.

``BaseService[ConfigT]`` provides the lifecycle shared by services that own
a [CacheStore][nstatus.core.cache_store.CacheStore]: structured logging via
[Logger][nstatus.core.logger.Logger], graceful shutdown via
``asyncio.Event``, interval-based cycling with
[run_forever()][nstatus.core.base_service.BaseService.run_forever],
consecutive failure limits, and Prometheus metrics.

See Also:
    [Session][nstatus.services.session.Session]: The concrete service whose
        ``run()`` is one timeline refresh.
    [BaseServiceConfig][nstatus.core.base_service.BaseServiceConfig]: Base
        configuration model.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from nstatus.models.constants import ServiceName

from .logger import Logger
from .metrics import (
    CLIENT_INFO,
    COMPONENT_COUNTER,
    COMPONENT_GAUGE,
    CYCLE_DURATION_SECONDS,
    MetricsConfig,
)
from .yaml import load_yaml


if TYPE_CHECKING:
    from types import TracebackType

    from .cache_store import CacheStore


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Loop settings for [run_forever()][nstatus.core.base_service.BaseService.run_forever].

    Attributes:
        interval: Pause between the end of one cycle and the start of the next.
        max_consecutive_failures: Failed cycles in a row after which the loop
            gives up. ``0`` never gives up.
        metrics: Prometheus endpoint and collection switch.
    """

    interval: float = Field(default=300.0, ge=5.0, description="Seconds between cycles")
    max_consecutive_failures: int = Field(
        default=5, ge=0, description="Failed cycles in a row before stopping (0 = never)"
    )
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """A configured component with a periodic ``run()`` and a shutdown flag.

    Subclasses declare ``SERVICE_NAME`` (logger name and metrics label) and
    ``CONFIG_CLASS`` (model used by
    [from_dict()][nstatus.core.base_service.BaseService.from_dict]), and
    implement [run()][nstatus.core.base_service.BaseService.run].
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, store: CacheStore, config: ConfigT | None = None) -> None:
        if config is None:
            config = cast("ConfigT", self.CONFIG_CLASS())
        self._config: ConfigT = config
        self._store = store
        self._logger = Logger(self.SERVICE_NAME)
        self._stopping = asyncio.Event()

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def is_running(self) -> bool:
        return not self._stopping.is_set()

    @abstractmethod
    async def run(self) -> None:
        """One cycle of work."""

    def request_shutdown(self) -> None:
        """Make the current or next wait in ``run_forever()`` return early and stop the loop."""
        self._stopping.set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to *timeout* seconds; ``True`` means shutdown was requested."""
        try:
            async with asyncio.timeout(timeout):
                await self._stopping.wait()
        except TimeoutError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Cycle Loop
    # -------------------------------------------------------------------------

    async def _cycle(self) -> BaseException | None:
        """Run one cycle and record its metrics. Returns the failure, if any."""
        started = time.monotonic()
        try:
            await self.run()
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:  # top-level error boundary for the refresh loop
            self.inc_counter("cycles_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            return e

        self.inc_counter("cycles_success")
        self.set_gauge("last_cycle_timestamp", time.time())
        if self._config.metrics.enabled:
            CYCLE_DURATION_SECONDS.labels(component=self.SERVICE_NAME).observe(
                time.monotonic() - started
            )
        return None

    async def run_forever(self) -> None:
        """Repeat [run()][nstatus.core.base_service.BaseService.run] until told to stop.

        The loop ends on ``request_shutdown()`` or after
        ``max_consecutive_failures`` failed cycles in a row. A failed cycle is
        logged and counted; ``CancelledError`` propagates.
        """
        limit = self._config.max_consecutive_failures
        if self._config.metrics.enabled:
            CLIENT_INFO.info({"service": str(self.SERVICE_NAME)})
        self._logger.info("run_forever_started", interval=self._config.interval, limit=limit)

        failures = 0
        while self.is_running:
            error = await self._cycle()
            if error is None:
                failures = 0
                self._logger.info("cycle_completed", next_cycle_s=self._config.interval)
            else:
                failures += 1
                self._logger.error("cycle_failed", error=str(error), consecutive=failures)
            self.set_gauge("consecutive_failures", failures)

            if limit and failures >= limit:
                self._logger.critical("failure_limit_reached", failures=failures)
                break
            if await self.wait(self._config.interval):
                break

        self._logger.info("run_forever_stopped")

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, store: CacheStore, **kwargs: Any) -> Self:
        """Build from a YAML file (see [load_yaml()][nstatus.core.yaml.load_yaml])."""
        return cls.from_dict(load_yaml(config_path), store=store, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], store: CacheStore, **kwargs: Any) -> Self:
        return cls(store=store, config=cast("ConfigT", cls.CONFIG_CLASS(**data)), **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        self._stopping.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._stopping.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set ``nstatus_component_gauge{component, name}``. No-op while metrics are off."""
        if self._config.metrics.enabled:
            COMPONENT_GAUGE.labels(component=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Add to ``nstatus_component_counter{component, name}``. No-op while metrics are off."""
        if self._config.metrics.enabled:
            COMPONENT_COUNTER.labels(component=self.SERVICE_NAME, name=name).inc(value)
