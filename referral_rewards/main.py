"""
Main FastAPI application for the referral rewards service.
Serves health, referral (user), admin, public settings and metrics.
"""
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from referral_rewards.core.config import settings
from referral_rewards.core.errors import AppError
from referral_rewards.core.logging import configure_logging
from referral_rewards.api.routes import health, referral, admin, settings as public_settings
from referral_rewards.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Referral Rewards API",
    description="Referral registration, first top-up rewards and admin settings",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid.uuid4().hex
    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
        },
    )
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": exc.message})


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(referral.router)
app.include_router(admin.router)
app.include_router(public_settings.router)
app.include_router(metrics_router)
