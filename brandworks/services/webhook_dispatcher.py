"""Outbound webhook delivery engine.

For each domain event, every active webhook config of the user that is
subscribed to the event gets an independent, signed delivery:

    POST <url>
    Content-Type: application/json
    X-Signature: sha256=<hex HMAC-SHA256(secret, body)>
    User-Agent: BrandMeNow-Webhooks/1.0

    {"data": {...}, "event": "brand.updated", "timestamp": "2026-01-01T00:00:00+00:00"}

A subscriber gets up to ``max_attempts`` attempts. Success is any 2xx
response. Between attempts the engine waits base_delay * 2^(attempt-1);
there is no wait after the last attempt. Every attempt is written to the
delivery log before the next one starts.

Delivery is best-effort relative to the action that triggered it:
``dispatch`` never raises because a subscriber is slow, failing, or
unreachable, and one subscriber never delays or breaks another.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import httpx
import sqlalchemy.exc
from sqlalchemy.orm import Session, sessionmaker

from ..core.config import settings
from ..database import SessionLocal
from ..repositories.webhook_repository import WebhookConfigRepository
from ..schemas.webhook import WEBHOOK_TEST_EVENT, VerificationResult, WebhookEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
VERIFY_MESSAGE = "This is a test webhook from Brand Me Now."


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------

def canonical_json(payload: Dict[str, Any]) -> str:
    """Serialize with sorted keys and no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sign_payload(secret: str, body: str) -> str:
    """Signature header value for ``body``: ``sha256=<hex digest>``."""
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, signature_header: str, secret: str) -> bool:
    """
    Check a received ``X-Signature`` header against the raw request body.

    Subscribers run this (or its equivalent) to authenticate deliveries.

    Returns:
        True if signature is valid
    """
    if not signature_header or not signature_header.startswith("sha256="):
        return False

    expected_sig = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    received_sig = signature_header[7:]
    return hmac.compare_digest(expected_sig, received_sig)


@dataclass(frozen=True)
class WebhookTarget:
    """Delivery details of one subscribed config, detached from the session."""
    id: str
    url: str
    secret: str


@dataclass
class AttemptOutcome:
    status_code: int
    response_body: Optional[str]
    success: bool
    error_message: Optional[str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookDispatcher:
    """
    Fans out domain events to subscribed webhook endpoints.

    Args:
        session_factory: Creates database sessions for config lookups and the
            delivery log. Each blocking database call runs in a worker thread
            with its own session.
        client: Shared httpx client. Created (and owned) lazily if omitted.
        sleep: Awaitable used for backoff waits; injectable for tests.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: Optional[httpx.AsyncClient] = None,
        *,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        user_agent: Optional[str] = None,
        response_body_limit: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self._client = client
        self._owns_client = client is None
        self.max_attempts = max_attempts or settings.webhook_max_attempts
        self.base_delay_ms = settings.webhook_base_delay_ms if base_delay_ms is None else base_delay_ms
        self.timeout_seconds = timeout_seconds or settings.webhook_timeout_seconds
        self.max_concurrency = max_concurrency or settings.webhook_max_concurrency
        self.user_agent = user_agent or settings.webhook_user_agent
        self.response_body_limit = response_body_limit or settings.webhook_response_body_limit
        self._sleep = sleep
        self._clock = clock
        self._background: Set[asyncio.Task] = set()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Wait for background deliveries and close the owned HTTP client."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()

    # -- database access (runs in worker threads) ----------------------------

    def _load_targets(self, user_id: str, event: str) -> List[WebhookTarget]:
        db = self._session_factory()
        try:
            configs = WebhookConfigRepository(db).list_subscribers(user_id, event)
            return [WebhookTarget(id=c.id, url=c.url, secret=c.secret) for c in configs]
        finally:
            db.close()

    def _write_delivery(self, **fields: Any) -> None:
        db = self._session_factory()
        try:
            WebhookConfigRepository(db).record_delivery(**fields)
        except Exception as e:
            logger.warning(
                "Failed to write webhook delivery log: %s", e,
                extra={"webhook_id": fields.get("webhook_config_id"), "attempt": fields.get("attempt")},
            )
            db.rollback()
        finally:
            db.close()

    # -- public API ----------------------------------------------------------

    async def dispatch(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        """
        Deliver ``event`` to every active subscriber of ``user_id``.

        Unknown event names are dropped with a warning. Returns once every
        subscriber has either succeeded or exhausted its attempts.
        """
        try:
            event_name = WebhookEvent(event).value
        except ValueError:
            logger.warning(f"Unknown webhook event {event!r} dropped", extra={"user_id": user_id})
            return

        try:
            targets = await asyncio.to_thread(self._load_targets, user_id, event_name)
        except sqlalchemy.exc.SQLAlchemyError as e:
            logger.error(f"Could not load webhooks for user {user_id}: {e}", extra={"event": event_name})
            return

        if not targets:
            logger.debug(f"No webhooks subscribed to {event_name} for user {user_id}")
            return

        envelope = {
            "event": event_name,
            "timestamp": self._clock().isoformat(),
            "data": payload,
        }
        body = canonical_json(envelope)
        slots = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(target: WebhookTarget) -> bool:
            async with slots:
                return await self.deliver(target, event_name, envelope, body)

        results = await asyncio.gather(*(_bounded(t) for t in targets), return_exceptions=True)

        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Webhook delivery to {target.id} crashed: {result!r}",
                    extra={"webhook_id": target.id, "event": event_name},
                )

        delivered = sum(1 for r in results if r is True)
        logger.info(
            f"Webhook event {event_name} delivered to {delivered}/{len(targets)} subscriber(s)",
            extra={"user_id": user_id},
        )

    def dispatch_in_background(self, user_id: str, event: str, payload: Dict[str, Any]) -> asyncio.Task:
        """Start ``dispatch`` without waiting for it. Must be called from a running loop."""
        task = asyncio.create_task(self.dispatch(user_id, event, payload))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def deliver(self, target: WebhookTarget, event: str, envelope: Dict[str, Any], body: str) -> bool:
        """Run the retry sequence for one subscriber. Returns True on success."""
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(target.secret, body),
            "User-Agent": self.user_agent,
        }

        for attempt in range(1, self.max_attempts + 1):
            outcome = await self._attempt(target.url, body, headers)

            await asyncio.to_thread(
                self._write_delivery,
                webhook_config_id=target.id,
                event=event,
                payload=envelope,
                attempt=attempt,
                status_code=outcome.status_code,
                response_body=outcome.response_body,
                success=outcome.success,
                error_message=outcome.error_message,
            )

            if outcome.success:
                logger.info(
                    f"Webhook {target.id} delivered {event} (attempt {attempt})",
                    extra={"status_code": outcome.status_code},
                )
                return True

            if attempt < self.max_attempts:
                delay_ms = self.base_delay_ms * 2 ** (attempt - 1)
                logger.warning(
                    f"Webhook {target.id} attempt {attempt}/{self.max_attempts} failed, "
                    f"retrying in {delay_ms}ms: {outcome.error_message}",
                    extra={"event": event, "status_code": outcome.status_code},
                )
                await self._sleep(delay_ms / 1000)

        logger.error(
            f"Webhook {target.id} delivery of {event} failed after {self.max_attempts} attempts",
            extra={"event": event},
        )
        return False

    async def _attempt(self, url: str, body: str, headers: Dict[str, str]) -> AttemptOutcome:
        try:
            response = await self._get_client().post(
                url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException:
            return AttemptOutcome(0, None, False, f"Request timed out after {self.timeout_seconds:g}s")
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return AttemptOutcome(0, None, False, str(exc) or type(exc).__name__)

        success = 200 <= response.status_code < 300
        return AttemptOutcome(
            status_code=response.status_code,
            response_body=response.text[: self.response_body_limit],
            success=success,
            error_message=None if success else f"HTTP {response.status_code}",
        )

    async def verify(self, url: str, secret: str) -> VerificationResult:
        """Send one signed ``webhook.test`` event to ``url`` and report what happened."""
        body = canonical_json({
            "event": WEBHOOK_TEST_EVENT,
            "timestamp": self._clock().isoformat(),
            "data": {"message": VERIFY_MESSAGE},
        })
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(secret, body),
            "User-Agent": self.user_agent,
        }
        outcome = await self._attempt(url, body, headers)

        if outcome.success:
            message = "Webhook URL is reachable and responded successfully."
        elif outcome.status_code:
            message = f"Webhook URL responded with HTTP {outcome.status_code}."
        else:
            message = f"Failed to reach webhook URL: {outcome.error_message}"

        return VerificationResult(success=outcome.success, status_code=outcome.status_code, message=message)


def build_dispatcher(session_factory: Optional[sessionmaker] = None,
                     client: Optional[httpx.AsyncClient] = None) -> WebhookDispatcher:
    """Dispatcher wired to the application database."""
    if session_factory is None:
        session_factory = SessionLocal
    return WebhookDispatcher(session_factory, client)
