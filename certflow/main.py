from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from certflow.api.middleware import RequestLogMiddleware
from certflow.api.v1.router import v1_router
from certflow.api.v1.ws import router as ws_router
from certflow.common.exceptions import CertFlowException
from certflow.common.logging import get_logger, setup_logging
from certflow.config import settings
from certflow.core.notifications.service import wait_for_deliveries

logger = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("CertFlow API starting (env=%s)", settings.APP_ENV)
    yield
    await wait_for_deliveries()


app = FastAPI(
    title="CertFlow API",
    description="Building certification (SLF / PBG) workflow engine",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLogMiddleware)


@app.exception_handler(CertFlowException)
async def certflow_exception_handler(request: Request, exc: CertFlowException):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
        headers=exc.headers,
    )


# API routes
app.include_router(v1_router, prefix="/api/v1")
app.include_router(ws_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "certflow",
        "version": "1.0.0",
        "env": settings.APP_ENV,
    }
