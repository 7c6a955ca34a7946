import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from salesdesk.api.routes.chat import router as chat_router
from salesdesk.api.routes.health import router as health_router
from salesdesk.api.routes.realtime import router as realtime_router
from salesdesk.core.config import settings
from salesdesk.core.exceptions import register_exception_handlers
from salesdesk.core.logging import configure_logging, get_logger
from salesdesk.core.rate_limit import limiter
from salesdesk.services.chat.fanout import realtime_fanout
from salesdesk.services.chat.retention import run_retention_loop

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: message retention sweeper
    logger.info(f"{settings.PROJECT_NAME} is starting up...")
    retention_task = None
    if settings.CHAT_RETENTION_ENABLED:
        retention_task = asyncio.create_task(run_retention_loop())
    yield
    # Shutdown
    if retention_task is not None:
        retention_task.cancel()
        try:
            await retention_task
        except asyncio.CancelledError:
            pass
    await realtime_fanout.shutdown()
    logger.info(f"{settings.PROJECT_NAME} is shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# CORS configuration
allowed_origins = ["http://localhost:5173", "http://localhost:8080", "http://localhost:3000"]
if settings.ALLOWED_ORIGINS and settings.ALLOWED_ORIGINS != "*":
    allowed_origins = [origin.strip() for origin in settings.ALLOWED_ORIGINS.split(",")] + allowed_origins
elif settings.ALLOWED_ORIGINS == "*":
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.state.limiter = limiter
register_exception_handlers(app)

# Include routers
app.include_router(health_router, tags=["Health"])
app.include_router(chat_router, prefix=f"{settings.API_V1_STR}/chat", tags=["Chat"])
app.include_router(realtime_router, prefix=f"{settings.API_V1_STR}/chat", tags=["Realtime"])
