import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from cityreport.api.preferences import router as preferences_router
from cityreport.api.reports import router as reports_router
from cityreport.core.config import Settings
from cityreport.core.database import ServiceContainer, build_services

# --- LOGGING SETUP ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


# --- TIMING MIDDLEWARE ---
class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the FastAPI app. Tests pass a prebuilt ServiceContainer."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("🚀 Starting City Report backend...")
        container = services or build_services(settings or Settings.from_env())
        app.state.services = container

        # Opportunistic expiry sweep; at most once per interval
        sweep_task = asyncio.create_task(container.scheduler.run_if_due(container.sweeper))
        logger.info("✅ All services initialized - Server ready!")

        yield

        # Shutdown
        logger.info("🔄 Shutting down...")
        outcome = await sweep_task
        logger.info(f"Startup sweep outcome: {outcome.status.value}")
        if services is None:
            await container.close()
        logger.info("✅ All services closed gracefully")

    app = FastAPI(title="City Report Backend", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimingMiddleware)

    app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])
    app.include_router(preferences_router, prefix="/api/preferences", tags=["Preferences"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "cityreport.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
