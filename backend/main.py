from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException
from api.v1 import auth
from api.dependencies import get_state_store
from core.config import settings
from db.base import initialize_database
from db.mongodb import close_mongo_client, init_mongo_indexes
from db.session import engine
from utils.logging_config import configure_logging, RequestContextMiddleware
from utils.responses import envelope, no_store_json

# Configure logging with date-based files and TTL retention
logger = configure_logging("authgate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.USE_MONGO:
        await init_mongo_indexes()
        logger.info("Mongo indexes ensured")
    else:
        await initialize_database()
        logger.info("SQL database initialized")
    logger.info("Application startup complete")
    yield
    await get_state_store().close()
    if settings.USE_MONGO:
        close_mongo_client()
    else:
        await engine.dispose()
        logger.info("Disposed SQL engine")
    logger.info("Application shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "body"


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        message = str(err.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(_field_name(err.get("loc", ())), []).append(message)
    return no_store_json(envelope(False, "Validation failed.", errors=errors), status_code=400)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return no_store_json(
        envelope(False, str(exc.detail)),
        status_code=exc.status_code,
        headers=exc.headers,
    )


# Global exception handler to ensure 500s for unexpected errors
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error at {request.url.path}: {exc}")
    return no_store_json(envelope(False, "Internal server error"), status_code=500)


# Add logging context middleware to capture user_id and API path
app.add_middleware(RequestContextMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, tags=["Authentication"])


@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": settings.VERSION}
