from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles

from comicgen.api import agent
from comicgen.api.middleware import install_exception_handlers, install_request_context
from comicgen.core.logging import configure_logging
from comicgen.core.metrics import get_metrics_payload
from comicgen.core.settings import settings
from comicgen.core.telemetry import setup_telemetry
from comicgen.db import models  # noqa: F401  (registers tables on Base.metadata)
from comicgen.db.base import Base
from comicgen.db.session import get_engine, init_engine


logger = logging.getLogger("comicgen")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)

    init_engine(settings.database_url)

    setup_telemetry(app, service_name="comicgen-agent")

    if settings.db_auto_create and settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=get_engine())

    os.makedirs(os.path.join(settings.output_dir, "images"), exist_ok=True)
    os.makedirs(os.path.join(settings.output_dir, "audio"), exist_ok=True)
    logger.info("agent_backend_started app_name=%s", settings.app_name)
    yield


app = FastAPI(title="comicgen agent backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(
    settings.output_url_prefix,
    StaticFiles(directory=settings.output_dir, check_dir=False),
    name="output",
)
app.mount(
    settings.media_url_prefix,
    StaticFiles(directory=settings.media_root, check_dir=False),
    name="media",
)

install_request_context(app)
install_exception_handlers(app)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics_endpoint():
    return PlainTextResponse(get_metrics_payload(), media_type="text/plain; version=0.0.4; charset=utf-8")


app.include_router(agent.router)
