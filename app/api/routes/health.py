from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Literal

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text

from app.core.config import settings
from app.db.session import get_session

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)

ProbeState = Literal["ok", "false", "error", "not_responding"]


@dataclass(frozen=True)
class ProbeDefinition:
    id: str
    path: str
    method: str = "GET"
    boolean_field: str | None = None
    success_statuses: tuple[int, ...] = ()
    allow_error_message_includes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProbeResult:
    id: str
    method: str
    path: str
    state: ProbeState
    responding: bool
    httpStatus: int | None
    message: str
    booleanField: str | None = None
    booleanValue: bool | None = None


PROBES = (
    ProbeDefinition("stripe_diagnostics", "/api/stripe/diagnostics", boolean_field="ok", success_statuses=(200,)),
    ProbeDefinition("checkout_verify", "/api/checkout/verify?session_id=healthcheck", success_statuses=(200, 400, 404)),
    ProbeDefinition(
        "stripe_session_status",
        "/api/stripe/session-status?session_id=healthcheck",
        success_statuses=(200, 400, 404),
        allow_error_message_includes=("no such checkout.session", "missing session_id"),
    ),
    # POST-only routes answer 405 to a GET when they are mounted
    ProbeDefinition("orders_create_route", "/api/orders/create", success_statuses=(405,)),
    ProbeDefinition("checkout_create_route", "/api/checkout/create", success_statuses=(405,)),
    ProbeDefinition("onboarding_submit_route", "/api/onboarding/submit", success_statuses=(405,)),
    ProbeDefinition("stripe_webhook_route", "/api/stripe/webhook", success_statuses=(405,)),
    ProbeDefinition("cal_webhook_route", "/api/cal/webhook", success_statuses=(405,)),
)


def _response_message(status_code: int, body: object) -> str:
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {status_code}"


def classify_probe(probe: ProbeDefinition, status_code: int, body: object) -> ProbeResult:
    boolean_value = None
    if probe.boolean_field and isinstance(body, dict) and isinstance(body.get(probe.boolean_field), bool):
        boolean_value = body[probe.boolean_field]
    message = _response_message(status_code, body)
    base = dict(
        id=probe.id,
        method=probe.method,
        path=probe.path,
        responding=True,
        httpStatus=status_code,
        booleanField=probe.boolean_field,
        booleanValue=boolean_value,
    )
    if boolean_value is False:
        return ProbeResult(state="false", message=f"{probe.boolean_field}=false", **base)

    if probe.success_statuses:
        success = status_code in probe.success_statuses
    else:
        success = 200 <= status_code < 300
    lowered = message.lower()
    if not success and any(entry in lowered for entry in probe.allow_error_message_includes):
        success = True
    return ProbeResult(state="ok" if success else "error", message=message, **base)


async def _probe(client: httpx.AsyncClient, probe: ProbeDefinition) -> ProbeResult:
    try:
        response = await client.request(probe.method, probe.path)
    except httpx.TimeoutException:
        message = f"Timeout after {settings.health_probe_timeout_seconds}s"
    except httpx.HTTPError:
        message = "Request failed to complete"
    else:
        try:
            body = response.json()
        except ValueError:
            body = None
        return classify_probe(probe, response.status_code, body)
    logger.warning("health_probe_not_responding", extra={"probe": probe.id, "error": message})
    return ProbeResult(
        id=probe.id,
        method=probe.method,
        path=probe.path,
        state="not_responding",
        responding=False,
        httpStatus=None,
        message=message,
        booleanField=probe.boolean_field,
    )


async def probe_endpoints(origin: str, transport: httpx.AsyncBaseTransport | None = None) -> dict:
    async with httpx.AsyncClient(
        base_url=origin,
        timeout=settings.health_probe_timeout_seconds,
        transport=transport,
    ) as client:
        results = await asyncio.gather(*(_probe(client, probe) for probe in PROBES))

    summary = {
        "total": len(results),
        "ok": sum(1 for item in results if item.state == "ok"),
        "false": sum(1 for item in results if item.state == "false"),
        "error": sum(1 for item in results if item.state == "error"),
        "notResponding": sum(1 for item in results if item.state == "not_responding"),
    }
    return {
        "ok": summary["error"] == 0 and summary["notResponding"] == 0,
        "summary": summary,
        "checks": [asdict(item) for item in results],
        "checkedAt": datetime.now(timezone.utc).isoformat(),
    }


def human_summary(payload: dict) -> str:
    summary = payload["summary"]
    lines = [
        f"Health Check: {'PASS' if payload['ok'] else 'ATTENTION NEEDED'}",
        (
            f"Summary -> total: {summary['total']}, ok: {summary['ok']}, false: {summary['false']}, "
            f"error: {summary['error']}, not responding: {summary['notResponding']}"
        ),
        f"Checked at: {payload['checkedAt']}",
        "",
        "Checks:",
    ]
    for check in payload["checks"]:
        lines.append(
            f"- [{check['state'].upper()}] {check['id']} ({check['method']} {check['path']}) "
            f"status={check['httpStatus'] if check['httpStatus'] is not None else 'none'} "
            f'message="{check["message"]}"'
        )
    return "\n".join(lines)


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok", "service": "wardstudio_checkout"}


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness() -> JSONResponse:
    try:
        with get_session() as session:
            session.execute(text("SELECT 1"))
        return JSONResponse(status_code=200, content={"status": "ready"})
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "reason": f"database_unavailable: {exc.__class__.__name__}",
            },
        )


@router.get("/api/health/endpoints")
async def health_endpoints(request: Request, format: str = ""):
    payload = await probe_endpoints(str(request.base_url).rstrip("/"))
    if format.strip().lower() == "human":
        return PlainTextResponse(human_summary(payload))
    return payload
