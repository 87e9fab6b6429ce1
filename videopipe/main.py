import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request

from .api import jobs
from .config import Settings
from .dependencies import get_event_bus, get_job_scheduler, get_settings
from .logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    settings: Settings = get_settings()
    setup_logging(settings)

    config_info = settings.config_file_info
    logging.info(f"Configuration loaded from: {config_info['active_config_file']}")
    logging.info(f"Running on hostname: {config_info['hostname']}")

    logging.info("Video pipeline starting up...")
    logging.info(f"Source directory: {settings.source_directory}")
    logging.info(f"Output directory: {settings.output_directory}")
    logging.info(f"Quarantine directory: {settings.quarantine_directory}")

    scheduler = get_job_scheduler()
    if settings.auto_start:
        await scheduler.start()
    else:
        logging.info("auto_start disabled - waiting for operator start")

    yield

    logging.info("Video pipeline shutting down...")
    drained = await scheduler.stop()
    if not drained:
        logging.warning("Shutdown continued with jobs still in flight")
    await scheduler.close()
    await get_event_bus().flush()
    logging.info("Scheduler stoppet")


app = FastAPI(
    title="Video Pipeline",
    description="Queue, process and dispose of incoming video files",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logging.info(
        f"Incoming request: {request.method} {request.url.path}",
        extra={
            "operation": "http_request",
            "method": request.method,
            "path": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        },
    )

    response = await call_next(request)

    logging.info(
        f"Response: {response.status_code}",
        extra={
            "operation": "http_response",
            "status_code": response.status_code,
            "path": request.url.path,
        },
    )
    return response


app.include_router(jobs.router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "videopipe"}


if __name__ == "__main__":
    uvicorn.run(
        "videopipe.main:app", host="0.0.0.0", port=8000, reload=False, log_level="info"
    )
