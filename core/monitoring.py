import logging

import prometheus_client as prom
from prometheus_client import start_http_server

DISPATCH_REQUESTS = prom.Counter(
    'router_dispatch_total', 'Dispatched requests by outcome', ['outcome']
)
CACHE_LOOKUPS = prom.Counter(
    'router_cache_lookups_total', 'Response cache lookups by result', ['result']
)
PROVIDER_LATENCY_MS = prom.Histogram(
    'router_provider_latency_ms',
    'Provider call latency in milliseconds',
    ['provider_id'],
    buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)


def start_metrics_server(port: int = 9090, addr: str = '127.0.0.1') -> None:
    """Starts the Prometheus exporter."""
    # Bind to 127.0.0.1 to ensure the port is not exposed externally.
    start_http_server(port, addr=addr)
    logging.info(f"Metrics exporter started on {addr}:{port}")
