"""HTTP surface of the relay operations, mounted under ``/functions``."""

import logging
from collections.abc import Callable

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from . import relays
from .config import Settings, get_settings
from .errors import RelayError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_http_client():
    """Dependency providing the outbound HTTP client for relay calls."""
    with httpx.Client(timeout=get_settings().relay_timeout_sec) as client:
        yield client


def _relay(operation: Callable, request: relays.RelayModel, client: httpx.Client, settings: Settings):
    try:
        result = operation(settings, request, client=client)
    except RelayError as exc:
        logger.warning("Relay %s failed: %s", operation.__name__, exc.message)
        return JSONResponse(status_code=400, content={"success": False, "error": exc.message})
    return result.model_dump(by_alias=True)


@router.post("/make-call")
def make_call(
    request: relays.CallRelayRequest,
    client: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
):
    """Place a voice call to ``to``."""
    return _relay(relays.make_call, request, client, settings)


@router.post("/send-sms")
def send_sms(
    request: relays.SmsRelayRequest,
    client: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
):
    """Send ``message`` to ``to`` as SMS."""
    return _relay(relays.send_sms, request, client, settings)


@router.post("/send-email")
def send_email(
    request: relays.EmailRelayRequest,
    client: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
):
    """Send an email through Gmail."""
    return _relay(relays.send_email, request, client, settings)


@router.post("/create-task")
def create_task(
    request: relays.TaskRelayRequest,
    client: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
):
    """Create a Google Tasks entry."""
    return _relay(relays.create_task, request, client, settings)
