from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError

from app.api.responses import error_response, read_json_object
from app.core.rate_limit import RateLimiter
from app.services.onboarding import OnboardingValidationError, UnknownOrderError, submit_onboarding

router = APIRouter(tags=["onboarding"])
logger = logging.getLogger(__name__)


@router.post(
    "/api/onboarding/submit",
    dependencies=[Depends(RateLimiter("onboarding-submit", "onboarding_rate_limit"))],
)
async def submit_onboarding_route(request: Request):
    payload = await read_json_object(request)
    if payload is None:
        return error_response(400, "Invalid JSON payload.")
    try:
        result = submit_onboarding(payload)
    except OnboardingValidationError as exc:
        return error_response(400, str(exc))
    except UnknownOrderError as exc:
        return error_response(404, str(exc))
    except SQLAlchemyError as exc:
        logger.error("onboarding_submit_failed", extra={"error": str(exc)})
        return error_response(500, f"Unable to store onboarding submission: {exc}")
    return jsonable_encoder(result.as_dict())
