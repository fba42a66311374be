import time
from functools import wraps
from typing import Callable, Dict, Optional, Union

from loguru import logger
from prometheus_client import REGISTRY, Counter, Gauge, Histogram, start_http_server


class MetricsRegistry:
    def __init__(self, registry=None):
        # Use a provided registry or the default one
        self.registry = registry or REGISTRY

        # Orchestrator metrics
        self.sms_events_total = Counter(
            "sms_relay_events_total",
            "Total number of inbound SMS events by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.outstanding_work = Gauge(
            "sms_relay_outstanding_work",
            "Number of events holding a keep-alive handle",
            registry=self.registry,
        )

        # Telegram client metrics
        self.send_total = Counter(
            "sms_relay_send_total",
            "Total number of messages delivered to Telegram",
            registry=self.registry,
        )
        self.send_errors = Counter(
            "sms_relay_send_errors",
            "Total number of errors delivering messages to Telegram",
            ["status_code"],
            registry=self.registry,
        )
        self.lookup_total = Counter(
            "sms_relay_destination_lookup_total",
            "Total number of successful destination lookups",
            registry=self.registry,
        )
        self.lookup_errors = Counter(
            "sms_relay_destination_lookup_errors",
            "Total number of failed destination lookups",
            registry=self.registry,
        )
        self.request_latency = Histogram(
            "sms_relay_request_seconds",
            "Time spent in Telegram API requests",
            ["operation"],
            registry=self.registry,
        )

        # Common metrics
        self.up = Gauge(
            "sms_relay_up",
            "Whether the SMS relay service is up",
            ["component"],
            registry=self.registry,
        )


# Global metrics registry
metrics = MetricsRegistry()


def start_metrics_server(port: int = 9090, host: str = "127.0.0.1"):
    """Start the Prometheus metrics server."""
    start_http_server(port, host)


def measure_time(
    metric: Histogram, labels: Optional[Union[Dict[str, str], Callable]] = None
) -> Callable:
    """Decorator to measure the execution time of a coroutine."""

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            labels_dict = {}
            if callable(labels) and args:
                try:
                    labels_dict = labels(args[0])
                except Exception as e:
                    logger.error(f"Error getting labels from function: {e}")
            elif isinstance(labels, dict):
                labels_dict = labels

            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                try:
                    metric.labels(**labels_dict).observe(duration)
                except Exception as e:
                    logger.error(f"Error recording metric: {e}")

        return wrapper

    return decorator
