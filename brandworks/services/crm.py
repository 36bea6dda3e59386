"""CRM integration seam: token storage, token refresh, and data sanitization.

Nothing here talks to the CRM's HTTP API. The crm-sync worker is given a
``CrmSender`` (from ``settings.crm_sender_factory``) and this module makes
sure whatever it is handed is safe to leave the platform.
"""

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

from ..core.config import settings
from ..exceptions import CrmAuthError
from ..queues.broker import Job
from ..queues.worker import JobContext
from ..schemas.jobs import CrmSyncJob

logger = logging.getLogger(__name__)

# Never forwarded to the CRM, whatever the caller puts in ``data``.
BLOCKED_FIELDS = frozenset({
    "password",
    "password_hash",
    "credit_card",
    "ssn",
    "stripe_customer_id",
    "supabase_token",
    "api_key",
})

REFRESH_MARGIN_SECONDS = 5 * 60
# Stored tokens outlive the access token so the refresh token stays usable.
TOKEN_TTL_GRACE_SECONDS = 3600


def sanitize_crm_data(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``data`` without blocked fields.

    Matching is case-insensitive and applies to nested objects too. Each
    stripped field is logged by name, never by value.
    """
    clean: Dict[str, Any] = {}
    for key, value in data.items():
        if str(key).lower() in BLOCKED_FIELDS:
            logger.warning(f"Blocked field stripped from CRM payload: {key}")
            continue
        if isinstance(value, Mapping):
            value = sanitize_crm_data(value)
        clean[key] = value
    return clean


@dataclass(frozen=True)
class TokenPair:
    """OAuth tokens for the CRM. ``expires_at`` is epoch seconds."""
    access_token: str
    refresh_token: str
    expires_at: float

    def expires_within(self, seconds: float, now: float) -> bool:
        return self.expires_at - now <= seconds

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "TokenPair":
        data = json.loads(raw)
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=float(data["expires_at"]),
        )


class TokenStore(Protocol):
    """Where the current token pair lives between processes."""

    async def get(self) -> Optional[TokenPair]: ...

    async def set(self, tokens: TokenPair, ttl_seconds: int) -> None: ...


class RedisTokenStore:
    """Token pair stored as JSON under a single Redis key with a TTL."""

    def __init__(self, client, key: Optional[str] = None):
        self.client = client
        self.key = key or settings.crm_token_key

    async def get(self) -> Optional[TokenPair]:
        raw = await self.client.get(self.key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return TokenPair.from_json(raw)
        except (ValueError, KeyError) as e:
            logger.error(f"Stored CRM tokens are unreadable: {e}")
            return None

    async def set(self, tokens: TokenPair, ttl_seconds: int) -> None:
        await self.client.set(self.key, tokens.to_json(), ex=max(int(ttl_seconds), 1))


# Exchanges a refresh token for a new pair (the CRM's OAuth endpoint).
TokenRefresher = Callable[[str], Awaitable[TokenPair]]


class CrmTokenProvider:
    """
    Hands out a valid CRM access token, refreshing it shortly before expiry.

    One refresh runs at a time per provider; concurrent callers wait for it
    and reuse the result.
    """

    def __init__(
        self,
        store: TokenStore,
        refresher: TokenRefresher,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.refresher = refresher
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get_access_token(self) -> str:
        tokens = await self.store.get()
        if tokens is None:
            raise CrmAuthError("No CRM tokens stored. Complete the CRM OAuth flow first.")
        if not tokens.expires_within(REFRESH_MARGIN_SECONDS, self._clock()):
            return tokens.access_token

        async with self._lock:
            # Another caller may have refreshed while we waited.
            tokens = await self.store.get()
            if tokens is None:
                raise CrmAuthError("No CRM tokens stored. Complete the CRM OAuth flow first.")
            if not tokens.expires_within(REFRESH_MARGIN_SECONDS, self._clock()):
                return tokens.access_token

            logger.info("Refreshing CRM access token")
            try:
                fresh = await self.refresher(tokens.refresh_token)
            except CrmAuthError:
                raise
            except Exception as e:
                raise CrmAuthError(f"CRM token refresh failed: {e}") from e

            await self.store.set(fresh, self.ttl_for(fresh))
            return fresh.access_token

    def ttl_for(self, tokens: TokenPair) -> int:
        return int(tokens.expires_at - self._clock()) + TOKEN_TTL_GRACE_SECONDS


# (user_id, event_type, sanitized data) -> CRM response, if any
CrmSender = Callable[[str, str, Dict[str, Any]], Awaitable[Any]]


class CrmSyncProcessor:
    """crm-sync queue processor: sanitize the event data and hand it to the sender."""

    def __init__(self, sender: CrmSender):
        self.sender = sender

    async def __call__(self, job: Job, ctx: JobContext) -> Dict[str, Any]:
        payload = CrmSyncJob.model_validate(job.payload)
        data = sanitize_crm_data(payload.data)
        await self.sender(str(payload.user_id), payload.event_type.value, data)
        logger.info(
            f"CRM sync sent for user {payload.user_id}",
            extra={"event_type": payload.event_type.value, "fields": len(data)},
        )
        return {"synced": True, "eventType": payload.event_type.value}
