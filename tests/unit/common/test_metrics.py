import asyncio
from unittest.mock import MagicMock, patch

import pytest
from prometheus_client import CollectorRegistry

from sms_relay.common.metrics import (
    MetricsRegistry,
    measure_time,
    metrics,
    start_metrics_server,
)


class TestMetricsRegistry:

    def test_metrics_initialization(self):
        """Test that the metrics registry is properly initialized."""
        # Use a separate registry for each test to avoid conflicts
        registry = MetricsRegistry(registry=CollectorRegistry())

        assert hasattr(registry, "sms_events_total")
        assert hasattr(registry, "outstanding_work")
        assert hasattr(registry, "send_total")
        assert hasattr(registry, "send_errors")
        assert hasattr(registry, "lookup_total")
        assert hasattr(registry, "lookup_errors")
        assert hasattr(registry, "request_latency")
        assert hasattr(registry, "up")

    def test_global_metrics_instance(self):
        assert isinstance(metrics, MetricsRegistry)


class TestMeasureTime:

    @pytest.mark.asyncio
    async def test_observes_duration(self):
        """Test that the decorator records a duration with the given labels."""
        metric = MagicMock()

        @measure_time(metric, {"operation": "test"})
        async def work():
            await asyncio.sleep(0)
            return "done"

        assert await work() == "done"
        metric.labels.assert_called_once_with(operation="test")
        metric.labels.return_value.observe.assert_called_once()

    @pytest.mark.asyncio
    async def test_observes_on_exception(self):
        metric = MagicMock()

        @measure_time(metric, {"operation": "test"})
        async def fail():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await fail()
        metric.labels.return_value.observe.assert_called_once()

    @pytest.mark.asyncio
    async def test_callable_labels(self):
        metric = MagicMock()

        class Worker:
            name = "w1"

            @measure_time(metric, lambda self: {"operation": self.name})
            async def run(self):
                return 1

        await Worker().run()
        metric.labels.assert_called_once_with(operation="w1")


def test_start_metrics_server():
    with patch("sms_relay.common.metrics.start_http_server") as mock_start:
        start_metrics_server(9100, "0.0.0.0")
        mock_start.assert_called_once_with(9100, "0.0.0.0")
