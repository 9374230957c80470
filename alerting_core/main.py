from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

import redis
from dotenv import load_dotenv

load_dotenv()

from alerting_core.api import dependencies, health_api
from alerting_core.api.alerts_api import router as alerts_router
from alerting_core.api.oncall_api import router as oncall_router
from alerting_core.api.suppression_api import router as suppression_router
from alerting_core.database import init_db
from alerting_core.logging_config import setup_logging
from alerting_core.metrics import setup_metrics
from alerting_core.rate_limiting import setup_rate_limiting
from alerting_core.scheduler.jobs import build_scheduler

logger = logging.getLogger(__name__)


def create_app(redis_client=None, enable_scheduler: bool = True) -> FastAPI:
    """
    Build the API application.

    The escalation sweep and housekeeping jobs start with the app lifespan
    unless enable_scheduler is False.
    """
    setup_logging()

    if redis_client is None:
        redis_client = redis.from_url(os.getenv("REDIS_URL", "redis://localhost:6379"))

    scheduler = build_scheduler(redis_client) if enable_scheduler else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true":
            init_db()

        if scheduler is not None:
            scheduler.start()
            logger.info(f"[SCHEDULER] Started {len(scheduler.get_jobs())} background jobs")

        yield

        # Shutdown
        if scheduler is not None:
            logger.info("[SCHEDULER] Shutting down background jobs...")
            scheduler.shutdown()

    app = FastAPI(
        title="Alerting Core",
        version="1.0.0",
        description="Alert suppression, grouping, routing and escalation decisions",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    dependencies.configure(redis_client)
    health_api.configure(redis_client, scheduler)

    setup_rate_limiting(app)
    setup_metrics(app)

    app.include_router(health_api.router)
    app.include_router(alerts_router)
    app.include_router(suppression_router)
    app.include_router(oncall_router)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
