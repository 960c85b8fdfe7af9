"""
FastAPI application for the Story Studio generation service.

Run with: python main.py --reload
"""

import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from dotenv import load_dotenv
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import ApiKeyMiddleware
from src.api.rate_limit import limiter
from src.api.routes import health, images, progress, stories
from src.core.cloudwatch_logging import setup_cloudwatch_logging, flush_cloudwatch_logging
from src.core.errors import ValidationError, WorkflowError
from src.core.storage import is_r2_configured
from src.db.engine import init_db, close_db, get_session_factory
from src.services.orchestrator import close_orchestrator
from src.services.story_store import SqlStoryStore, set_story_store


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

DEFAULT_ALLOWED_HOSTS = ["localhost", "127.0.0.1", "test", "testserver"]
DEFAULT_CORS_ORIGINS = ["http://localhost:8080", "http://localhost:5173"]


def _env_list(name: str, default: list[str]) -> list[str]:
    value = os.getenv(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Application starting up...")

    # CloudWatch logging (sends pipeline logs only, opt-in via CLOUDWATCH_ENABLED=true)
    setup_cloudwatch_logging()

    if os.getenv("OPENROUTER_API_KEY"):
        logger.info("OpenRouter API key configured")
    else:
        logger.warning("No OpenRouter API key found - generation runs in offline mode")

    if is_r2_configured():
        logger.info("Cloudflare R2 storage configured")
    else:
        logger.warning("R2 storage not configured - images are stored as provider URLs")

    await init_db()
    session_factory = get_session_factory()
    if session_factory is not None:
        set_story_store(SqlStoryStore(session_factory))

    yield

    # Shutdown: cleanup
    await close_orchestrator()
    await close_db()
    logger.info("Application shutting down...")
    flush_cloudwatch_logging()


app = FastAPI(
    title="Story Studio API",
    description="""
Multi-stage generation of illustrated children's stories.

## Workflow
1. **POST** `/api/v1/stories` - Create a story from title, setting, characters and plot
2. **POST** `/api/v1/stories/{id}/expand-setting` - Get a suggested setting to edit
3. **POST** `/api/v1/stories/{id}/approve-setting` - Approve it; characters are extracted
4. **POST** `/api/v1/stories/{id}/approve-characters` - Approve characters; the text is drafted
5. **POST** `/api/v1/stories/{id}/approve-text` - Save edited page text
6. **POST** `/api/v1/stories/{id}/generate-images` - Illustrate the story in the background

Subscribe to `/api/v1/ws` for progress events. Page images keep an
append-only history and whole stories can be saved and restored as revisions.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    content = {"detail": exc.message}
    if isinstance(exc, ValidationError):
        content["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content)


# Shared-secret check (disabled when API_SECRET_KEY is unset)
app.add_middleware(
    ApiKeyMiddleware,
    api_key=os.getenv("API_SECRET_KEY"),
    exempt_paths={"/", "/api/v1/health"},
)

# Trusted Host middleware: reject requests with unexpected Host headers
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_env_list("ALLOWED_HOSTS", DEFAULT_ALLOWED_HOSTS),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_env_list("CORS_ORIGINS", DEFAULT_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-User-Id", "X-Api-Key"],
)

# Include routers
app.include_router(health.router, prefix="/api/v1")
app.include_router(stories.router, prefix="/api/v1")
app.include_router(images.router, prefix="/api/v1")
app.include_router(progress.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    """Point at the API documentation."""
    return {
        "message": "Story Studio API",
        "docs": "/docs",
        "redoc": "/redoc",
    }
