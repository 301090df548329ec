"""FastAPI server for the booking agent.

Run with:
    uvicorn booking_agent.server:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from booking_agent.api.routes import router
from booking_agent.config import CORS_ORIGINS, DATABASE_URL, SERVER_HOST, SERVER_PORT
from booking_agent.services.database import create_db_engine, init_db
from booking_agent.services.metrics import metrics
from booking_agent.session import build_runtime

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the engine, stores and session manager once per process."""
    engine = create_db_engine(DATABASE_URL)
    init_db(engine)
    runtime = build_runtime(engine)
    application.state.sessions = runtime.sessions
    logger.info("Booking agent ready (%s)", engine.url.render_as_string(hide_password=True))
    yield
    application.state.sessions = None
    runtime.close()
    metrics.flush()
    engine.dispose()
    logger.info("Booking agent stopped")


app = FastAPI(
    title="Booking Agent",
    description="Conversational assistant that books, lists and cancels appointments.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Tag every request with an ``X-Request-ID`` for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "Booking Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "messages": "/api/messages",
    }


if __name__ == "__main__":
    logger.info("Starting booking agent API on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("booking_agent.server:app", host=SERVER_HOST, port=SERVER_PORT)
