"""
Audit Platform Authentication - FastAPI Application.

This is the main entry point for the authentication service, providing a
FastAPI application with the login, session and one-time code endpoints.
"""
import logging
from contextlib import asynccontextmanager

# Third-party imports
import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local application imports
from audit_auth import __version__
from audit_auth.api import router as auth_router
from audit_auth.auth import build_lifecycle_engine
from audit_auth.config import settings
from audit_auth.database import init_db
from audit_auth.errors import AuthError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format=settings.LOG_FORMAT,
)
if settings.LOG_FILE:
    file_handler = logging.FileHandler(settings.LOG_FILE)
    file_handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)
logger = logging.getLogger("audit_auth")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database and wire the lifecycle engine; dispose on shutdown."""
    logger.info("Initializing Audit Platform Auth API")
    database = await init_db(settings.DATABASE_URL)
    app.state.database = database
    app.state.lifecycle_engine = build_lifecycle_engine(database)
    logger.info("Audit Platform Auth API initialized")

    yield

    logger.info("Shutting down Audit Platform Auth API")
    await database.dispose()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    """Handle domain errors, which carry their own status code."""
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check endpoint
@app.get(
    "/health",
    tags=["health"],
    summary="Health check",
    description="Check if the API is running.",
)
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


# Include authentication router
app.include_router(auth_router, prefix=settings.API_PREFIX)


# Run the application if executed directly
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )
