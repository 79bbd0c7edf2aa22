from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from comicgen.api import proxy
from comicgen.api.middleware import install_exception_handlers, install_request_context
from comicgen.core.logging import configure_logging
from comicgen.core.settings import settings
from comicgen.core.telemetry import setup_telemetry
from comicgen.services.agent_client import AgentClient
from comicgen.services.storage import BucketStore


logger = logging.getLogger("comicgen")


def _build_agent_client() -> AgentClient:
    return AgentClient(
        base_url=settings.agent_backend_url,
        app_name=settings.app_name,
        timeout_seconds=settings.agent_backend_timeout_seconds,
    )


def _build_bucket_store() -> BucketStore:
    return BucketStore(
        root_dir=settings.media_root,
        public_base_url=settings.gateway_public_url,
        url_prefix=settings.media_url_prefix,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)
    setup_telemetry(app, service_name="comicgen-gateway")

    app.state.agent_client = _build_agent_client()
    app.state.bucket_store = _build_bucket_store()
    logger.info("gateway_started agent_backend_url=%s", settings.agent_backend_url)
    try:
        yield
    finally:
        await app.state.agent_client.aclose()


app = FastAPI(title="comicgen gateway", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
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


app.include_router(proxy.router)
