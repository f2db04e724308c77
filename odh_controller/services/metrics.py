"""
Prometheus metrics for the controller process.
"""

from typing import Optional, Tuple

import structlog
from prometheus_client import Counter, start_http_server

logger = structlog.get_logger(__name__)

STARTUP_TASK_RUNS = Counter(
    "odh_startup_task_runs_total",
    "One-shot startup task executions by outcome",
    ["task", "result"],
)

RECONCILERS_REGISTERED = Counter(
    "odh_reconcilers_registered_total",
    "Reconcilers registered with the manager",
    ["type"],
)


def start_metrics_server(address: Optional[Tuple[str, int]]):
    """Serve the default registry on `address`. Returns the HTTP server, or None if disabled."""
    if address is None:
        logger.info("metrics server disabled")
        return None
    host, port = address
    started = start_http_server(port, addr=host)
    logger.info("starting metrics server", host=host, port=port)
    # Older prometheus_client releases return nothing
    if isinstance(started, tuple):
        return started[0]
    return None
