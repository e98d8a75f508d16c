"""Calls, SMS and email to candidates: relay first, device-native channel as fallback.

An Activity is only written once a channel has actually been used: after the
relay reports success, or when the native intent is handed back to the caller.
"""

import logging
from typing import Any, Literal, Optional
from urllib.parse import quote, urlencode

import httpx
from pydantic import BaseModel, EmailStr, TypeAdapter, ValidationError
from sqlmodel import Session

from . import services
from .errors import CommunicationError, RelayError, ValidationFailure
from .models import Candidate
from .preferences import PreferenceStore

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


class CommunicationOutcome(BaseModel):
    channel: Literal["relay", "native"]
    upstream_id: Optional[str] = None
    native_uri: Optional[str] = None


class RelayClient:
    """Invokes the relay functions over HTTP."""

    def __init__(self, base_url: str, client: httpx.Client):
        self.base_url = base_url.rstrip("/")
        self.client = client

    def invoke(self, name: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self.client.post(f"{self.base_url}/{name}", json=payload)
        except httpx.HTTPError as exc:
            raise RelayError(f"{name} unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error or not data.get("success"):
            raise RelayError(data.get("error") or f"{name} failed with HTTP {response.status_code}")
        return data


def native_call_uri(phone: str) -> str:
    return f"tel:{phone}"


def native_sms_uri(phone: str, message: str) -> str:
    return f"sms:{phone}?body={quote(message)}"


def native_email_uri(to: str, subject: str, body: str) -> str:
    return f"mailto:{to}?{urlencode({'subject': subject, 'body': body}, quote_via=quote)}"


class CommunicationService:
    def __init__(self, session: Session, relay: RelayClient, preferences: PreferenceStore):
        self.session = session
        self.relay = relay
        self.preferences = preferences

    def _invoke_relay(self, name: str, payload: dict[str, Any], fallback_allowed: bool) -> Optional[dict[str, Any]]:
        """Return the relay response, or None when the native channel should take over."""
        try:
            return self.relay.invoke(name, payload)
        except RelayError as exc:
            logger.warning("Relay %s failed for candidate %s: %s", name, payload.get("candidateId"), exc.message)
            if not fallback_allowed:
                raise CommunicationError(f"Could not complete {name}: {exc.message}") from exc
            return None

    @staticmethod
    def _require_phone(candidate: Candidate) -> str:
        if not candidate.phone:
            raise ValidationFailure("Candidate has no phone number")
        return candidate.phone

    def call(self, candidate: Candidate, user_id: Optional[str] = None, user_name: str = "Recruiter") -> CommunicationOutcome:
        phone = self._require_phone(candidate)
        prefs = self.preferences.load()
        name = f"{candidate.first_name} {candidate.last_name}"

        if prefs.call_method == "twilio":
            data = self._invoke_relay(
                "make-call",
                {
                    "to": phone,
                    "candidateId": candidate.id,
                    "candidateName": name,
                    "userId": user_id,
                    "userName": user_name,
                },
                prefs.fallback_to_native,
            )
            if data is not None:
                services.log_call(
                    self.session, candidate.id, phone, "initiated",
                    twilio_call_sid=data.get("callSid"), created_by=user_id, created_by_name=user_name,
                )
                services.create_activity(
                    self.session, candidate.id, "call", f"Called {name} at {phone}",
                    created_by=user_id, created_by_name=user_name,
                )
                return CommunicationOutcome(channel="relay", upstream_id=data.get("callSid"))

        services.log_call(self.session, candidate.id, phone, "native", created_by=user_id, created_by_name=user_name)
        services.create_activity(
            self.session, candidate.id, "call", f"Called {name} at {phone}",
            created_by=user_id, created_by_name=user_name,
        )
        return CommunicationOutcome(channel="native", native_uri=native_call_uri(phone))

    def send_sms(
        self,
        candidate: Candidate,
        message: str,
        user_id: Optional[str] = None,
        user_name: str = "Recruiter",
    ) -> CommunicationOutcome:
        phone = self._require_phone(candidate)
        if not message.strip():
            raise ValidationFailure("Message is empty")
        prefs = self.preferences.load()
        name = f"{candidate.first_name} {candidate.last_name}"

        if prefs.sms_method == "twilio":
            data = self._invoke_relay(
                "send-sms",
                {
                    "to": phone,
                    "message": message,
                    "candidateId": candidate.id,
                    "candidateName": name,
                    "userId": user_id,
                    "userName": user_name,
                },
                prefs.fallback_to_native,
            )
            if data is not None:
                services.log_sms(
                    self.session, candidate.id, phone, message, data.get("status") or "sent",
                    twilio_message_sid=data.get("messageSid"), created_by=user_id, created_by_name=user_name,
                )
                services.create_activity(
                    self.session, candidate.id, "sms", f"SMS sent to {name}",
                    created_by=user_id, created_by_name=user_name,
                )
                return CommunicationOutcome(channel="relay", upstream_id=data.get("messageSid"))

        services.log_sms(
            self.session, candidate.id, phone, message, "native",
            created_by=user_id, created_by_name=user_name,
        )
        services.create_activity(
            self.session, candidate.id, "sms", f"SMS sent to {name}",
            created_by=user_id, created_by_name=user_name,
        )
        return CommunicationOutcome(channel="native", native_uri=native_sms_uri(phone, message))

    def send_email(
        self,
        candidate: Candidate,
        subject: str,
        body: str,
        user_id: Optional[str] = None,
        user_name: str = "Recruiter",
        from_email: Optional[str] = None,
    ) -> CommunicationOutcome:
        try:
            to = _email_adapter.validate_python(candidate.email)
        except ValidationError as exc:
            raise ValidationFailure(f"Candidate email is not valid: {candidate.email!r}") from exc
        if not subject.strip() or not body.strip():
            raise ValidationFailure("Subject and body are required")

        prefs = self.preferences.load()
        name = f"{candidate.first_name} {candidate.last_name}"

        if prefs.email_method == "gmail":
            data = self._invoke_relay(
                "send-email",
                {
                    "to": to,
                    "subject": subject,
                    "body": body,
                    "candidateId": candidate.id,
                    "candidateName": name,
                    "userId": user_id,
                    "userName": user_name,
                },
                prefs.fallback_to_native,
            )
            if data is not None:
                services.log_email(
                    self.session, candidate.id, to, subject, body, "sent",
                    from_email=from_email, gmail_message_id=data.get("messageId"),
                    created_by=user_id, created_by_name=user_name,
                )
                services.create_activity(
                    self.session, candidate.id, "email", f"Email sent to {name}: {subject}",
                    created_by=user_id, created_by_name=user_name,
                )
                return CommunicationOutcome(channel="relay", upstream_id=data.get("messageId"))

        services.log_email(
            self.session, candidate.id, to, subject, body, "native",
            from_email=from_email, created_by=user_id, created_by_name=user_name,
        )
        services.create_activity(
            self.session, candidate.id, "email", f"Email sent to {name}: {subject}",
            created_by=user_id, created_by_name=user_name,
        )
        return CommunicationOutcome(channel="native", native_uri=native_email_uri(to, subject, body))
