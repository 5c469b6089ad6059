from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from app.database import engine, Base, SessionLocal
import app.models  # noqa: F401  # Ensure all SQLAlchemy models are registered
from app.routers import invites as invites_router
from app.routers import schedule as schedule_router
from app.routers import rooms as rooms_router
from app.routers import meet as meet_router
from app.schemas.schemas import ErrorResponse
from app.services.errors import AccessControlError, DeniedError
from app.utils.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Base.metadata.create_all(bind=engine)
    logging.getLogger("app").info("Database initialized.")
    yield
    logging.getLogger("app").info("Application shutdown.")


app = FastAPI(
    title="MeetGate",
    description="Access control and lifecycle engine for video meetings",
    lifespan=lifespan,
)

# Include routers
app.include_router(invites_router.router)
app.include_router(schedule_router.router)
app.include_router(rooms_router.router)
app.include_router(meet_router.router)


@app.exception_handler(AccessControlError)
async def access_control_exception_handler(request: Request, exc: AccessControlError):
    logger = logging.getLogger("app")
    if isinstance(exc, DeniedError):
        logger.warning(f"Denied {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} ({exc.status_code}) on {request.url.path}: {exc.message}")
    body = ErrorResponse(**exc.to_payload())
    return JSONResponse(
        status_code=exc.status_code, content=body.model_dump(exclude_none=True)
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger = logging.getLogger("app")
    logger.error(f"Global exception: {str(exc)}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal Server Error. Please check logs."},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger = logging.getLogger("app")
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code} error: {exc.detail}\n{traceback.format_exc()}"
        )
    else:
        logger.info(f"HTTP {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger = logging.getLogger("app")
    errors = exc.errors()

    # Extract just the error messages for a simpler, guaranteed-serializable response
    error_messages = [err["msg"] for err in errors]

    logger.warning(f"Validation error: {error_messages}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": error_messages},
    )


@app.get("/health", tags=["healthcheck"])
async def health_check():
    try:
        db = SessionLocal()
        # Simple query to check DB connection
        db.execute(text("SELECT 1"))
        db.close()
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logging.getLogger("app").error(f"Health check database connection error: {e}")
        raise HTTPException(
            status_code=503, detail=f"Database connection failed: {str(e)}"
        )
