import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from backend.app.api.v1.router import api_router
from backend.app.core.config import settings
from backend.app.core.errors import PassbindError, Upstream
from backend.app.core.logging import configure_logging
from backend.app.db import init_models

configure_logging()
logger = logging.getLogger(__name__)


# --- Create tables on startup ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info("%s %s started (%s)", settings.PROJECT_NAME, settings.PROJECT_VERSION, settings.ENVIRONMENT)
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Set up CORS
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(PassbindError)
async def passbind_error_handler(request: Request, exc: PassbindError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = Upstream()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME} passkey API"}
