from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes.checkout import router as checkout_router
from app.api.routes.email import router as email_router
from app.api.routes.health import router as health_router
from app.api.routes.onboarding import router as onboarding_router
from app.api.routes.orders import router as orders_router
from app.api.routes.stripe import router as stripe_router
from app.api.routes.webhooks import router as webhook_router
from app.core.config import settings
from app.core.logging import setup_logging
from app.core.rate_limit import RateLimitExceededError


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": str(exc), "retryAfterSeconds": exc.retry_after_seconds},
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


def create_app() -> FastAPI:
    setup_logging(settings.log_level)
    application = FastAPI(title="Ward Studio Checkout API")
    application.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
    application.include_router(health_router)
    application.include_router(orders_router)
    application.include_router(checkout_router)
    application.include_router(stripe_router)
    application.include_router(webhook_router)
    application.include_router(onboarding_router)
    application.include_router(email_router)
    return application


app = create_app()
