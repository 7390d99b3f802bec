"""Process entry point: applies settings to logging and metrics, then builds the orchestrator."""
from typing import Optional

from ai.routing.orchestrator import RequestOrchestrator
from core import monitoring
from core.config import Config, get_settings
from core.logging import LOG_FILE, logger, setup_logging


def bootstrap(settings: Optional[Config] = None, log_file=LOG_FILE) -> RequestOrchestrator:
    """
    Configure the process from ``settings`` (``get_settings()`` by default).

    Re-applies logging at ``LOG_LEVEL`` (which may come from ``.env``),
    starts the Prometheus exporter when ``METRICS_PORT`` is set and returns
    an orchestrator built from the same settings.
    """
    settings = settings or get_settings()
    setup_logging(settings.app.LOG_LEVEL, log_file=log_file)
    if settings.app.METRICS_PORT:
        monitoring.start_metrics_server(settings.app.METRICS_PORT)
    else:
        logger.info("METRICS_PORT not set, metrics exporter disabled")
    return RequestOrchestrator.from_settings(settings)
