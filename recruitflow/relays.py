"""Relay operations: one upstream call each to Twilio, Gmail or Google Tasks.

Each operation validates its request, obtains credentials, issues exactly one
upstream request and returns the upstream id. Any failure raises
:class:`RelayError` with a readable reason; nothing is retried.
"""

import base64
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any, Optional
from xml.sax.saxutils import escape

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .config import Settings
from .errors import RelayError

logger = logging.getLogger(__name__)


class RelayModel(BaseModel):
    """Wire models use camelCase keys (``candidateId``); Python code uses snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CallRelayRequest(RelayModel):
    to: Optional[str] = None
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class SmsRelayRequest(CallRelayRequest):
    message: Optional[str] = None


class EmailRelayRequest(CallRelayRequest):
    subject: Optional[str] = None
    body: Optional[str] = None


class TaskRelayRequest(RelayModel):
    title: Optional[str] = None
    notes: Optional[str] = None
    due: Optional[datetime] = None
    candidate_id: Optional[str] = None
    candidate_name: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None


class RelayResult(RelayModel):
    success: bool = True


class CallResult(RelayResult):
    call_sid: str


class SmsResult(RelayResult):
    message_sid: str
    status: Optional[str] = None


class EmailResult(RelayResult):
    message_id: str


class TaskResult(RelayResult):
    task_id: str
    task: dict[str, Any]


def _require(request: BaseModel, *fields: str) -> None:
    missing = [name for name in fields if not getattr(request, name)]
    if missing:
        noun = "field" if len(fields) == 1 else "fields"
        raise RelayError(f"Missing required {noun}: {', '.join(fields)}")


@contextmanager
def _http_client(settings: Settings, client: Optional[httpx.Client]) -> Iterator[httpx.Client]:
    if client is not None:
        yield client
        return
    with httpx.Client(timeout=settings.relay_timeout_sec) as owned:
        yield owned


def _send(client: httpx.Client, method: str, url: str, service: str, **kwargs) -> dict[str, Any]:
    try:
        response = client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise RelayError(f"{service} request failed: {exc}") from exc

    if response.is_error:
        raise RelayError(f"{service} error: {response.text}")

    try:
        return response.json()
    except ValueError as exc:
        raise RelayError(f"{service} returned an unreadable response") from exc


def _twilio_credentials(settings: Settings) -> tuple[str, str, str]:
    if not (settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_phone_number):
        raise RelayError("Twilio is not configured")
    return settings.twilio_account_sid, settings.twilio_auth_token, settings.twilio_phone_number


def exchange_refresh_token(settings: Settings, client: httpx.Client) -> str:
    """Trade the stored Google refresh token for a short-lived access token."""
    if not (settings.google_client_id and settings.google_client_secret and settings.google_refresh_token):
        raise RelayError("Google is not configured")

    try:
        response = client.post(
            settings.google_token_url,
            data={
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "refresh_token": settings.google_refresh_token,
                "grant_type": "refresh_token",
            },
        )
    except httpx.HTTPError as exc:
        raise RelayError(f"Failed to get access token: {exc}") from exc

    if response.is_error:
        raise RelayError("Failed to get access token")

    try:
        access_token = response.json().get("access_token")
    except ValueError as exc:
        raise RelayError("Failed to get access token") from exc
    if not access_token:
        raise RelayError("Failed to get access token")
    return access_token


def make_call(settings: Settings, request: CallRelayRequest, client: Optional[httpx.Client] = None) -> CallResult:
    """Place an outbound voice call through Twilio."""
    _require(request, "to")
    account_sid, auth_token, from_number = _twilio_credentials(settings)

    greeting = f"Connecting your call from {settings.app_name}."
    if request.user_name:
        greeting = f"Connecting your call with {request.user_name} from {settings.app_name}."

    with _http_client(settings, client) as http:
        data = _send(
            http,
            "POST",
            f"{settings.twilio_api_base}/Accounts/{account_sid}/Calls.json",
            "Twilio",
            auth=(account_sid, auth_token),
            data={
                "To": request.to,
                "From": from_number,
                "Twiml": f"<Response><Say>{escape(greeting)}</Say></Response>",
            },
        )

    logger.info("Twilio call %s placed for candidate %s", data.get("sid"), request.candidate_id)
    return CallResult(call_sid=data.get("sid", ""))


def send_sms(settings: Settings, request: SmsRelayRequest, client: Optional[httpx.Client] = None) -> SmsResult:
    """Send one SMS through Twilio."""
    _require(request, "to", "message")
    account_sid, auth_token, from_number = _twilio_credentials(settings)

    with _http_client(settings, client) as http:
        data = _send(
            http,
            "POST",
            f"{settings.twilio_api_base}/Accounts/{account_sid}/Messages.json",
            "Twilio",
            auth=(account_sid, auth_token),
            data={"To": request.to, "From": from_number, "Body": request.message},
        )

    logger.info("Twilio SMS %s sent for candidate %s", data.get("sid"), request.candidate_id)
    return SmsResult(message_sid=data.get("sid", ""), status=data.get("status"))


def encode_email(sender: str, to: str, subject: str, body: str) -> str:
    """RFC 2822 message, base64url encoded without padding as Gmail expects."""
    message = EmailMessage()
    message["To"] = to
    message["From"] = sender
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


def send_email(settings: Settings, request: EmailRelayRequest, client: Optional[httpx.Client] = None) -> EmailResult:
    """Send one email through the Gmail API."""
    _require(request, "to", "subject", "body")

    with _http_client(settings, client) as http:
        access_token = exchange_refresh_token(settings, http)
        raw = encode_email(settings.gmail_user, request.to, request.subject, request.body)
        data = _send(
            http,
            "POST",
            settings.gmail_send_url,
            "Gmail API",
            headers={"Authorization": f"Bearer {access_token}"},
            json={"raw": raw},
        )

    logger.info("Gmail message %s sent for candidate %s", data.get("id"), request.candidate_id)
    return EmailResult(message_id=data.get("id", ""))


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def create_task(settings: Settings, request: TaskRelayRequest, client: Optional[httpx.Client] = None) -> TaskResult:
    """Create one task in the user's default Google Tasks list."""
    _require(request, "title")

    task_body: dict[str, Any] = {"title": request.title}
    if request.notes:
        task_body["notes"] = request.notes
    if request.due:
        task_body["due"] = _rfc3339(request.due)

    with _http_client(settings, client) as http:
        access_token = exchange_refresh_token(settings, http)
        data = _send(
            http,
            "POST",
            settings.google_tasks_url,
            "Google Tasks API",
            headers={"Authorization": f"Bearer {access_token}"},
            json=task_body,
        )

    logger.info("Google task %s created for candidate %s", data.get("id"), request.candidate_id)
    return TaskResult(task_id=data.get("id", ""), task=data)
