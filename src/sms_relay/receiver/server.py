from typing import Optional

import uvicorn
from fastapi import FastAPI
from loguru import logger

from sms_relay.common.config import RelayConfig
from sms_relay.common.metrics import metrics, start_metrics_server
from sms_relay.receiver.routes import router


def create_app(config: RelayConfig) -> FastAPI:
    app = FastAPI(
        title="SMS Relay Receiver",
        description="Receives inbound SMS events and forwards them to Telegram",
        version="0.1.0",
    )

    app.include_router(router)

    @app.on_event("startup")
    async def startup_event():
        # Start metrics server if enabled
        if config.metrics.enabled:
            start_metrics_server(config.metrics.port, config.metrics.host)
            logger.info(
                f"Metrics server started on {config.metrics.host}:{config.metrics.port}"
            )

        metrics.up.labels(component="receiver").set(1)

        logger.info(f"SMS Relay Receiver started on {config.host}:{config.port}")

    @app.on_event("shutdown")
    async def shutdown_event():
        from sms_relay.forwarder.app import get_orchestrator

        tracker = get_orchestrator().tracker
        if tracker.outstanding:
            logger.info(f"Waiting for {tracker.outstanding} in-flight SMS to finish")
            await tracker.wait_idle(config.shutdown_timeout)

        metrics.up.labels(component="receiver").set(0)
        logger.info("SMS Relay Receiver shutting down")

    return app


def run_server(config: Optional[RelayConfig] = None):
    if not config:
        from sms_relay.forwarder.app import get_app_config

        config = get_app_config()

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
