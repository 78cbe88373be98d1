"""
registrar/main.py
Section allocation admin service

Every error leaves through APIError.to_response, so clients only ever see the
{success, error, message, code, details} envelope.
"""
import os
import logging
import uuid
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from registrar.config.settings import settings
from registrar.database import engine, create_all
from registrar.errors import APIError, ErrorCode, from_allocation_error
from registrar.exceptions import AllocationError
from registrar.routes import sections

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_all(engine)
    logger.info(f"Section allocation service up, settings: {settings.as_dict()}")
    yield
    await engine.dispose()
    logger.info("Section allocation service stopped")


app = FastAPI(
    title="Registrar Section Allocation API",
    version=VERSION,
    lifespan=lifespan
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": error.get("loc"), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.warning(f"[API] {request.method} {request.url.path} rejected: {len(errors)} validation error(s)")
    return APIError(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Request validation failed",
        code=ErrorCode.VALIDATION_ERROR,
        details={"errors": errors}
    ).to_response()


@app.exception_handler(StarletteHTTPException)
async def starlette_http_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"[API] {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return APIError(
        status_code=exc.status_code,
        message=str(exc.detail),
        code=ErrorCode.NOT_FOUND if exc.status_code == 404 else ErrorCode.INVALID_INPUT
    ).to_response()


@app.exception_handler(AllocationError)
async def allocation_error_handler(request: Request, exc: AllocationError):
    logger.warning(f"[API] {request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return from_allocation_error(exc).to_response()


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    logger.warning(f"[API] {request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return exc.to_response()


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log_id = str(uuid.uuid4())[:8]
    logger.exception(f"[{log_id}] Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
    return APIError(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        code=ErrorCode.INTERNAL_ERROR,
        details={"log_id": log_id}
    ).to_response()


@app.get("/health", tags=["Health"])
async def health_check():
    return {
        "status": "healthy",
        "admin_api": settings.FEATURE_SECTION_ADMIN_API,
        "version": VERSION,
    }


app.include_router(sections.router)


if __name__ == "__main__":
    import uvicorn

    reload = os.getenv("ENVIRONMENT", "development") == "development"
    uvicorn.run(
        "registrar.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 8000)),
        reload=reload,
        log_level=settings.LOG_LEVEL.lower()
    )
