from typing import Any, Dict, TYPE_CHECKING
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST
from streamgroup.utils.logging import get_logger

if TYPE_CHECKING:
    from streamgroup.consumer import Consumer

logger = get_logger("AdminAPI")

def create_admin_app(consumer: "Consumer") -> FastAPI:
    """
    Creates the FastAPI Admin Application.

    Args:
        consumer: The Consumer instance to report on.
    """
    app = FastAPI(title="streamgroup Admin API", version="0.1.0")

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Returns the health status of the worker."""
        if consumer.running:
            state = "stopping" if consumer.stopping else "running"
            return {"status": "ok", "worker_state": state}
        return {"status": "stopped", "worker_state": "stopped"}

    @app.get("/status")
    async def worker_status() -> Dict[str, Any]:
        """Loop level detail: busy cells, tick counts and the last fatal error."""
        return consumer.status()

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus exposition of the consumer's counters."""
        return Response(content=consumer.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return app

async def serve_admin(consumer: "Consumer", host: str = "0.0.0.0", port: int = 8001) -> None:
    """
    Serve the Admin API until cancelled.
    """
    from uvicorn import Config, Server

    config = Config(
        app=create_admin_app(consumer),
        host=host,
        port=port,
        log_config=None,
        log_level="warning",
    )
    server = Server(config)

    # Signals are handled by the worker
    server.install_signal_handlers = lambda: None

    logger.info(f"Starting Admin API on port {port}")
    await server.serve()
