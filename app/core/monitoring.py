from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def build_alert(event: str, payload: dict, settings: Settings) -> dict:
    return {
        "event": event,
        "service": "wardstudio_checkout",
        "env": settings.env,
        "occurredAt": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


async def send_monitoring_event(
    event: str,
    payload: dict,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Posts an operational alert to MONITORING_WEBHOOK_URL.

    Returns False when no webhook is configured or delivery failed; alerts never
    break the request that raised them.
    """
    settings = settings or default_settings
    webhook_url = (settings.monitoring_webhook_url or "").strip()
    if not webhook_url:
        return False
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds, transport=transport) as client:
            response = await client.post(webhook_url, json=build_alert(event, payload, settings))
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("monitoring_webhook_failed", extra={"alert": event, "error": str(exc)})
        return False
    return True
