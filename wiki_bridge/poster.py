"""
Ephemeral post delivery to the chat platform.

Command replies are posted as ephemeral messages: visible only to the user who
ran the command, authored by the bridge's bot user, in the invoking channel.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx
import structlog

from .metrics import MetricsCollector

log = structlog.get_logger()

# Retry configuration
MAX_RETRIES = 3
RETRY_BASE_SECONDS = 0.5


class EphemeralPoster:
    """
    Posts ephemeral messages through the chat platform's REST API.

    Retries on 429 and 5xx with exponential backoff; 4xx responses are not
    retried.
    """

    def __init__(
        self,
        chat_url: str,
        token: str,
        verify_tls: bool = True,
        request_timeout: int = 10,
        metrics: MetricsCollector | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._chat_url = chat_url.rstrip("/")
        self._token = token
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._metrics = metrics
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post_ephemeral(
        self,
        user_id: str,
        channel_id: str,
        message: str,
        bot_user_id: str,
    ) -> bool:
        """Send an ephemeral post. Returns False once retries are exhausted."""
        try:
            await self._post(user_id, channel_id, message, bot_user_id)
            return True
        except (httpx.HTTPError, RuntimeError) as exc:
            if self._metrics:
                self._metrics.inc("posts_failed_total")
            log.error("poster.failed", channel_id=channel_id, user_id=user_id, error=str(exc))
            return False

    async def _post(self, user_id: str, channel_id: str, message: str, bot_user_id: str) -> None:
        if self._client is None:
            raise RuntimeError("EphemeralPoster is not open")
        url = f"{self._chat_url}/api/v4/posts/ephemeral"
        body = {
            "user_id": user_id,
            "post": {
                "user_id": bot_user_id,
                "channel_id": channel_id,
                "message": message,
            },
        }
        headers = {"Authorization": f"Bearer {self._token}"}

        last_exc: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                resp = await self._client.post(url, json=body, headers=headers)

                if resp.status_code == 429:
                    retry_after = _retry_after(
                        resp.headers.get("Retry-After"), RETRY_BASE_SECONDS * (attempt + 1)
                    )
                    log.warning("poster.rate_limited", retry_after=retry_after)
                    await asyncio.sleep(retry_after)
                    continue

                resp.raise_for_status()
                if self._metrics:
                    self._metrics.inc("posts_sent_total")
                return

            except httpx.HTTPStatusError as exc:
                if 400 <= exc.response.status_code < 500:
                    log.error(
                        "poster.client_error",
                        status=exc.response.status_code,
                        channel_id=channel_id,
                    )
                    raise  # Don't retry 4xx
                last_exc = exc
            except (httpx.ConnectError, httpx.ReadError) as exc:
                last_exc = exc

            backoff = RETRY_BASE_SECONDS * (2 ** attempt)
            log.warning(
                "poster.retry",
                attempt=attempt + 1,
                backoff=backoff,
                error=str(last_exc),
            )
            await asyncio.sleep(backoff)

        if last_exc:
            raise last_exc
        raise RuntimeError("Ephemeral post rate limited on every attempt")


def _retry_after(value: str | None, default: float) -> float:
    """Seconds to wait from a Retry-After header, given as seconds or an HTTP date."""
    if not value:
        return default
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        log.warning("poster.bad_retry_after", value=value)
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)
