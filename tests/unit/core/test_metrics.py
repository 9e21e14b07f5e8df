"""
Unit tests for core.metrics module.

Tests:
- MetricsConfig defaults and validation
- MetricsServer no-op when disabled, start/stop idempotency
- Scrape endpoint content
"""

import socket

import aiohttp
import pytest
from pydantic import ValidationError

from nstatus.core.metrics import COMPONENT_GAUGE, MetricsConfig, MetricsServer


def free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestMetricsConfig:
    """MetricsConfig Pydantic model."""

    def test_defaults(self):
        config = MetricsConfig()
        assert config.enabled is False
        assert config.host == "127.0.0.1"
        assert config.path == "/metrics"

    @pytest.mark.parametrize("port", [80, 70000])
    def test_port_bounds(self, port):
        with pytest.raises(ValidationError):
            MetricsConfig(port=port)


class TestMetricsServer:
    """HTTP exposition."""

    async def test_disabled_does_not_bind(self):
        server = MetricsServer(MetricsConfig(enabled=False))
        await server.start()
        assert not server.is_running
        await server.stop()

    async def test_serves_metrics(self):
        port = free_port()
        server = MetricsServer(MetricsConfig(enabled=True, port=port))
        COMPONENT_GAUGE.labels(component="test", name="sample").set(42)
        await server.start()
        await server.start()
        try:
            assert server.is_running
            async with (
                aiohttp.ClientSession() as session,
                session.get(f"http://127.0.0.1:{port}/metrics") as response,
            ):
                body = await response.text()
            assert response.status == 200
            assert 'nstatus_component_gauge{component="test",name="sample"} 42.0' in body
        finally:
            await server.stop()
            await server.stop()
        assert not server.is_running
