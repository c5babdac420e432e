from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from html import escape
from typing import Callable, Sequence

import httpx

from app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_SENDER_REJECTION_PATTERN = re.compile(r"from|sender|domain|verify", re.IGNORECASE)
_SANDBOX_RESTRICTION_PATTERN = re.compile(
    r"you can only send testing emails to your own email address", re.IGNORECASE
)
_ALLOWED_RECIPIENT_PATTERN = re.compile(r"\(([^\s()]+@[^\s()]+)\)")
_MIN_RETRY_DELAY_SECONDS = 0.2

TEST_MODE_SUBJECT_PREFIX = "[TEST MODE REDIRECT] "


class EmailConfigurationError(RuntimeError):
    pass


class EmailProviderError(RuntimeError):
    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.provider_message = message
        self.status_code = status_code


@dataclass(frozen=True)
class EmailMessage:
    to: tuple[str, ...]
    subject: str
    html: str
    text: str

    @classmethod
    def build(cls, to: str | Sequence[str], subject: str, html: str, text: str) -> "EmailMessage":
        recipients = (to,) if isinstance(to, str) else tuple(to)
        return cls(to=recipients, subject=subject, html=html, text=text)


@dataclass(frozen=True)
class EmailDelivery:
    sender: str
    recipients: tuple[str, ...]
    redirected: bool = False


def is_sender_rejection(details: str) -> bool:
    return bool(_SENDER_REJECTION_PATTERN.search(details)) or "onboarding@resend.dev" in details.lower()


def is_sandbox_recipient_restriction(details: str) -> bool:
    return bool(_SANDBOX_RESTRICTION_PATTERN.search(details))


def extract_allowed_test_recipient(details: str) -> str | None:
    match = _ALLOWED_RECIPIENT_PATTERN.search(details)
    return match.group(1).strip() if match else None


def _retry_after_seconds(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return seconds if seconds >= 0 else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class EmailClient:
    """Resend REST client with rate-limit retry, sender fallback and sandbox redirect."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings or default_settings
        self._http_client = http_client
        self._sleep = sleep

    def _api_key(self) -> str:
        api_key = (self._settings.resend_api_key or "").strip()
        if not api_key:
            raise EmailConfigurationError("Missing RESEND_API_KEY.")
        return api_key

    def _post(self, payload: dict) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self._api_key()}",
            "Content-Type": "application/json",
            "Idempotency-Key": str(uuid.uuid4()),
        }
        if self._http_client is not None:
            return self._http_client.post(self._settings.resend_api_url, json=payload, headers=headers)
        with httpx.Client(timeout=self._settings.http_timeout_seconds) as client:
            return client.post(self._settings.resend_api_url, json=payload, headers=headers)

    def _post_with_retry(self, payload: dict) -> httpx.Response:
        retries = max(0, self._settings.email_rate_limit_retries)
        for attempt in range(retries + 1):
            try:
                response = self._post(payload)
            except httpx.HTTPError as exc:
                raise EmailProviderError("emails.send", str(exc)) from exc
            if response.status_code != 429 or attempt >= retries:
                return response
            delay = _retry_after_seconds(response.headers.get("retry-after"))
            if not delay:
                delay = self._settings.email_retry_base_seconds * (attempt + 1)
            logger.info(
                "resend_rate_limited",
                extra={"attempt": attempt + 1, "delay_seconds": round(delay, 3)},
            )
            self._sleep(max(delay, _MIN_RETRY_DELAY_SECONDS))
        return response

    def _send_from(self, sender: str, message: EmailMessage) -> httpx.Response:
        return self._post_with_retry(
            {
                "from": sender,
                "to": list(message.to),
                "subject": message.subject,
                "html": message.html,
                "text": message.text,
            }
        )

    def _redirect_to_sandbox_owner(
        self, details: str, sender: str, message: EmailMessage
    ) -> tuple[httpx.Response, str] | None:
        if not is_sandbox_recipient_restriction(details):
            return None
        allowed = extract_allowed_test_recipient(details)
        if not allowed:
            return None
        current = [address.strip().lower() for address in message.to if address.strip()]
        if current == [allowed.lower()]:
            return None

        intended = ", ".join(message.to)
        redirected = replace(
            message,
            to=(allowed,),
            subject=f"{TEST_MODE_SUBJECT_PREFIX}{message.subject}",
            html=(
                f"<p><strong>Resend test-mode redirect:</strong> intended recipient(s): {escape(intended)}</p>\n"
                f"{message.html}"
            ),
            text=f"Resend test-mode redirect. Intended recipient(s): {intended}\n\n{message.text}",
        )
        response = self._send_from(sender, redirected)
        if response.is_success:
            logger.warning(
                "resend_test_mode_redirected",
                extra={"intended": intended, "allowed": allowed},
            )
        return response, allowed

    def send(self, message: EmailMessage) -> EmailDelivery:
        preferred = (self._settings.email_from or "").strip() or self._settings.resend_fallback_from
        fallback = self._settings.resend_fallback_from.strip()

        response = self._send_from(preferred, message)
        if response.is_success:
            return EmailDelivery(sender=preferred, recipients=message.to)
        initial_details = response.text

        if is_sender_rejection(initial_details) and preferred.lower() != fallback.lower():
            logger.warning(
                "resend_sender_rejected",
                extra={"preferred": preferred, "fallback": fallback, "status": response.status_code},
            )
            response = self._send_from(fallback, message)
            if response.is_success:
                return EmailDelivery(sender=fallback, recipients=message.to)
            retry_details = response.text
            redirect = self._redirect_to_sandbox_owner(retry_details, fallback, message)
            if redirect and redirect[0].is_success:
                return EmailDelivery(sender=fallback, recipients=(redirect[1],), redirected=True)
            raise EmailProviderError(
                "emails.send",
                f"Preferred sender failed ({preferred}): {initial_details or 'unknown error'}. "
                f"Fallback sender failed ({fallback}): {retry_details or response.reason_phrase}",
                response.status_code,
            )

        redirect = self._redirect_to_sandbox_owner(initial_details, preferred, message)
        if redirect and redirect[0].is_success:
            return EmailDelivery(sender=preferred, recipients=(redirect[1],), redirected=True)
        raise EmailProviderError(
            "emails.send", initial_details or response.reason_phrase, response.status_code
        )
