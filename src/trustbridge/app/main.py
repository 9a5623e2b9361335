"""FastAPI application entry point for the TrustBridge marketplace API."""

import logging
import re
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trustbridge.app.config import get_settings
from trustbridge.infra.database import async_session, init_db
from trustbridge.services.errors import MarketplaceError
from trustbridge.services.forum_service import seed_default_categories

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and seed forum categories."""
    await init_db()
    async with async_session() as db:
        await seed_default_categories(db)
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _field_code(loc) -> str:
    """("body", "offerPrice") -> INVALID_OFFER_PRICE; no field -> VALIDATION_ERROR."""
    names = [part for part in loc if isinstance(part, str) and part not in ("body", "query", "path")]
    if not names:
        return "VALIDATION_ERROR"
    return "INVALID_" + _CAMEL_BOUNDARY.sub("_", names[-1]).upper()


async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = first.get("loc", ())
    field = ".".join(str(part) for part in loc if part not in ("body", "query", "path"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "error": f"{field}: {message}" if field else message,
            "code": _field_code(loc),
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": f"Internal server error: {exc}", "code": "INTERNAL_ERROR"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


app = FastAPI(
    title="TrustBridge Marketplace API",
    lifespan=lifespan,
    debug=settings.debug,
)
register_exception_handlers(app)

# CORS: any origin in debug mode
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from trustbridge.app.routes.auth import router as auth_router
from trustbridge.app.routes.listings import router as listings_router
from trustbridge.app.routes.admin import router as admin_router
from trustbridge.app.routes.nda import router as nda_router
from trustbridge.app.routes.buyer import profile_router as buyer_profile_router, verification_router
from trustbridge.app.routes.loi import router as loi_router
from trustbridge.app.routes.escrow import router as escrow_router
from trustbridge.app.routes.migration import router as migration_router
from trustbridge.app.routes.matching import router as matching_router
from trustbridge.app.routes.messages import router as messages_router
from trustbridge.app.routes.notifications import router as notifications_router
from trustbridge.app.routes.forum import router as forum_router

app.include_router(auth_router)
app.include_router(listings_router)
app.include_router(admin_router)
app.include_router(nda_router)
app.include_router(buyer_profile_router)
app.include_router(verification_router)
app.include_router(loi_router)
app.include_router(escrow_router)
app.include_router(migration_router)
app.include_router(matching_router)
app.include_router(messages_router)
app.include_router(notifications_router)
app.include_router(forum_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "trustbridge"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "trustbridge.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
