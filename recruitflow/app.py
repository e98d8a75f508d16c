import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from . import services
from .config import get_settings
from .database import engine, init_db
from .errors import RecruitFlowError, RemoteQueryError, recruitflow_error_handler
from .feed import CandidateFeed, set_feed
from .functions import router as functions_router
from .logging_config import configure_logging
from .realtime import get_event_bus
from .routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, load candidates and subscribe to changes on startup."""
    configure_logging()
    init_db()

    feed = CandidateFeed()
    feed.attach(get_event_bus())
    set_feed(feed)

    with Session(engine) as session:
        try:
            feed.bulk_load(lambda: [services.row_payload(c) for c in services.list_candidates(session)])
        except RemoteQueryError:
            logger.error("Starting with an empty candidate list")

    yield

    feed.close()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Recruitment tracking API: candidates, pipeline, scheduling and communication relays",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RecruitFlowError, recruitflow_error_handler)

app.include_router(router, prefix="/api")
app.include_router(functions_router, prefix="/functions")
