"""
Request dependencies.

The store, broadcaster and settings are built once per process by the
application factory and kept on ``app.state``; routes receive them through
these dependencies. Only routes that publish ask for the broadcaster.
"""
import hmac
import logging
from dataclasses import dataclass

from fastapi import Depends, Request

from signalhub.core.config import Settings
from signalhub.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    PermissionDeniedError,
)
from signalhub.core.metrics import metrics
from signalhub.services.broadcaster import SignalBroadcaster
from signalhub.services.signal_store import SignalStore

logger = logging.getLogger(__name__)


@dataclass
class AdminIdentity:
    """Administrator attached to the request by the host's session layer."""
    username: str


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_signal_store(request: Request) -> SignalStore:
    return request.app.state.signal_store


def get_broadcaster(request: Request) -> SignalBroadcaster:
    return request.app.state.broadcaster


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_ingest_key(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Check the pre-shared bearer key sent by signal producers.

    Fails closed: with no key configured every request is refused.
    """
    expected = settings.SIGNAL_API_KEY
    if not expected:
        logger.error("SIGNAL_API_KEY is not configured; refusing %s %s", request.method, request.url.path)
        metrics.auth_rejected("not_configured", _client(request))
        raise ConfigurationError("Signal ingestion is not configured on this server")

    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        logger.warning("Rejected %s from %s: missing or malformed Authorization header",
                       request.url.path, _client(request))
        metrics.auth_rejected("missing_credential", _client(request))
        raise AuthenticationError("Missing or invalid Authorization header")

    provided = header[len("Bearer "):]
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected %s from %s: invalid API key", request.url.path, _client(request))
        metrics.auth_rejected("invalid_credential", _client(request))
        raise PermissionDeniedError("Invalid API key")


async def require_admin(request: Request) -> AdminIdentity:
    """
    Administrator guard.

    Session handling lives outside this service: the host's session layer
    sets ``request.state.admin``. Without it the request is refused.
    """
    admin = getattr(request.state, "admin", None)
    if admin is None:
        raise AuthenticationError("Administrator session required", code="admin_session_required")
    if isinstance(admin, str):
        admin = AdminIdentity(username=admin)
    return admin
