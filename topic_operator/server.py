# topic_operator/server.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from topic_operator import __version__
from topic_operator.api import health as health_router
from topic_operator.api import topics as topics_router
from topic_operator.core.config import Settings, get_settings
from topic_operator.core.errors import install_exception_handlers
from topic_operator.core.log import setup_logging
from topic_operator.infra.kafka.admin import KafkaTopicAccessor
from topic_operator.infra.kube.client import KubeTopicClient
from topic_operator.services.controller import TopicController

logger = logging.getLogger(__name__)

ControllerFactory = Callable[[Settings], TopicController]


def build_controller(settings: Settings) -> TopicController:
    """Wire the controller against the real Kafka cluster and Kubernetes API."""
    return TopicController(
        accessor=KafkaTopicAccessor(settings),
        kube=KubeTopicClient(settings),
        settings=settings,
    )


def create_app(
    settings: Optional[Settings] = None,
    controller_factory: ControllerFactory = build_controller,
    start_controller: bool = True,
) -> FastAPI:
    settings = settings or get_settings()

    # Lifespan binds the controller (watch, drift monitor, workers) to the process
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        controller = controller_factory(settings)
        app.state.controller = controller
        if start_controller:
            controller.start()
        try:
            yield
        finally:
            controller.stop()

    app = FastAPI(
        title="Kafka Topic Operator",
        version=__version__,
        lifespan=lifespan,
        openapi_url="/api/v1/openapi.json",
        docs_url="/api/v1/docs",
        redoc_url=None,
    )
    install_exception_handlers(app)

    # Probes live at the root (Kubernetes convention), the state view under /api/v1
    app.include_router(health_router.router)
    app.include_router(topics_router.router, prefix="/api/v1")

    if settings.metrics_enabled:
        from topic_operator.api import metrics as metrics_router
        app.include_router(metrics_router.router, prefix="")
    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting Kafka topic operator %s (bootstrap=%s)", __version__, settings.kafka_bootstrap)
    uvicorn.run(create_app(settings), host=settings.http_host, port=settings.http_port, log_config=None)


if __name__ == "__main__":
    main()
