# survey_incentives/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from survey_incentives.api.v1.api import api_router
from survey_incentives.core.config import settings
from survey_incentives.core.exceptions import register_exception_handlers
from survey_incentives.core.kafka_producer import close_kafka_singleton
from survey_incentives.core.limiter import limiter
from survey_incentives.scheduler import get_scheduler_status, init_scheduler, shutdown_scheduler

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Survey incentives service starting up...")
    if settings.SCHEDULER_ENABLED:
        init_scheduler()

    yield

    logger.info("Survey incentives service shutting down...")
    shutdown_scheduler()
    close_kafka_singleton()


app = FastAPI(
    title="Survey Incentives Service",
    version="1.0.0",
    description="""
        Allocation engine for survey links and gift cards.

        ## Features

        * **Enrollment Gate**: Cap and open/close participant sign-up
        * **Survey Links**: Pool upload and exactly-once assignment
        * **Gift Cards**: Pool upload, eligibility, sending, delivery tracking
        * **Unsend**: Audited reversal that returns codes to the pool
        * **Participant Deletion**: Cascade that reclaims pooled resources

        ## Authentication

        Admin endpoints require JWT authentication via the `Authorization: Bearer <token>` header.
        Webhooks require the `X-Internal-Api-Key` header.
        """,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

origins = [
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Survey Incentives Service is running"}


@app.get("/health")
def health():
    return {"status": "ok", "scheduler": get_scheduler_status()}
