"""FastAPI application entry point"""

import asyncio
import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pagestream_api.api import catalog, sessions, stream
from pagestream_api.core.config import settings
from pagestream_api.core.database import engine, init_db
from pagestream_api.core.visitor_sessions import cleanup_visitor_sessions
from pagestream_api.models.errors import ApplicationError
from pagestream_api.models.schemas import ErrorResponse

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    force=True,
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-Id"],
)

_background_tasks = []


@app.exception_handler(ApplicationError)
async def application_error_handler(request: Request, exc: ApplicationError):
    logger.warning(f"[API] {exc.code.value} on {request.url.path}: {exc.message}")
    body = ErrorResponse(**exc.model_dump())
    return JSONResponse(status_code=exc.http_status, content=body.model_dump())


@app.on_event("startup")
async def startup_event():
    """Create catalog tables and start background cleanup tasks"""
    logger.info("=" * 60)
    logger.info("PAGESTREAM SERVICE STARTING")
    logger.info("=" * 60)
    logger.info(f"PID: {os.getpid()}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Image generation: {'on' if settings.enable_image_generation else 'off'}")
    logger.info("=" * 60)

    await init_db()
    _background_tasks.append(asyncio.create_task(stream.cleanup_old_sessions()))
    _background_tasks.append(asyncio.create_task(cleanup_visitor_sessions()))
    logger.info("✓ Background cleanup tasks started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    logger.info("Shutting down pagestream service...")
    for task in _background_tasks:
        task.cancel()
    await engine.dispose()
    logger.info("Pagestream service shutdown complete")


@app.get("/")
async def root():
    """Health check endpoint"""
    return {"status": "healthy", "version": settings.api_version}


@app.get("/health")
async def health():
    """Health check for monitoring"""
    return {"status": "healthy"}


# Documented error bodies for every API route
ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}

app.include_router(stream.router, prefix="/api", tags=["stream"], responses=ERROR_RESPONSES)
app.include_router(catalog.router, prefix="/api", tags=["catalog"], responses=ERROR_RESPONSES)
app.include_router(sessions.router, prefix="/api", tags=["sessions"], responses=ERROR_RESPONSES)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pagestream_api.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.environment == "development",
    )
