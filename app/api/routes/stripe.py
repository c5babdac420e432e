from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.encoders import jsonable_encoder

from app.api.responses import error_response
from app.core.config import settings
from app.db.session import get_session
from app.payments.base import PaymentConfigurationError, PaymentProviderError
from app.payments.diagnostics import get_stripe_diagnostics
from app.payments.factory import get_payment_provider
from app.payments.verification import get_verification_strategy

router = APIRouter(prefix="/api/stripe", tags=["stripe"])
logger = logging.getLogger(__name__)


@router.get("/diagnostics")
async def stripe_diagnostics():
    return get_stripe_diagnostics(settings).as_dict()


@router.get("/session-status")
async def stripe_session_status(session_id: str = ""):
    """Raw checkout session status, used by the embedded return page."""
    session_id = session_id.strip()
    if not session_id:
        return error_response(400, "Missing session_id")
    diagnostics = get_stripe_diagnostics(settings).as_dict()
    try:
        provider = get_payment_provider(settings)
    except PaymentConfigurationError as exc:
        return error_response(503, str(exc), diagnostics=exc.diagnostics)

    if provider.live:
        try:
            remote = provider.retrieve_session(session_id)
        except PaymentProviderError as exc:
            logger.warning("stripe_session_status_failed", extra={"session_id": session_id, "error": str(exc)})
            return error_response(502, exc.provider_message, diagnostics=diagnostics)
        return {
            "status": remote.status,
            "payment_status": remote.payment_status,
            "customer_email": remote.customer_email,
            "session_id": remote.id,
        }

    with get_session() as session:
        outcome = get_verification_strategy(provider).verify(session, session_id)
    verification = outcome.verification
    if verification is None:
        return error_response(404, f"No such checkout.session: {session_id}")
    return jsonable_encoder(
        {
            "status": "complete" if verification.paid else "open",
            "payment_status": "paid" if verification.paid else "unpaid",
            "customer_email": verification.customer_email,
            "session_id": verification.session_id,
        }
    )
