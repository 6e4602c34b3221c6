"""
HTTP delivery engine.

Sends a notification to its target URL, retrying transient failures
(non-2xx responses, per-attempt timeouts, connection errors) with
exponential backoff. Attempts run strictly one after another.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

import aiohttp
from multidict import CIMultiDict

from ..core.retry import compute_backoff_delay
from ..core.signing import NOTIFICATION_ID_HEADER, SIGNATURE_HEADER, compute_signature
from ..models import DeliveryResult, Notification
from .base import WebhookSender

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "webhookq/0.1.0"


def build_request_headers(
    notification: Notification, user_agent: Optional[str] = DEFAULT_USER_AGENT
) -> CIMultiDict:
    """
    Build the outbound headers for one notification.

    Custom headers are applied verbatim on top of the defaults; the signature
    and notification id headers are always set last. Names compare
    case-insensitively, so a later value replaces an earlier one whatever
    its casing.
    """
    headers: CIMultiDict = CIMultiDict()
    headers["Content-Type"] = notification.payload.content_type
    if user_agent:
        headers["User-Agent"] = user_agent

    # Add custom headers
    headers.update(notification.headers)

    if notification.secret:
        headers[SIGNATURE_HEADER] = compute_signature(
            notification.payload.body, notification.secret
        )

    headers[NOTIFICATION_ID_HEADER] = str(notification.id)
    return headers


class HttpWebhookSender(WebhookSender):
    """
    Webhook sender backed by a pooled aiohttp session.

    One session (and its connection pool) is shared by every notification
    sent through this instance, so a single sender can serve many consumers
    concurrently.

    Args:
        session: Existing session to use; it is not closed by ``close()``.
        retry_delay: Delay before the first retry in seconds, doubled for
            every further retry.
        max_retry_delay: Optional cap for a single backoff delay.
        user_agent: User-Agent header value (None to omit).
        pool_limit: Connection limit for the session created by the sender.
        sleep: Coroutine used for backoff waits.
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        retry_delay: float = 1.0,
        max_retry_delay: Optional[float] = None,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        pool_limit: int = 100,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.user_agent = user_agent
        self.pool_limit = pool_limit
        self._sleep = sleep
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "HttpWebhookSender":
        return cls(
            retry_delay=settings.retry_delay,
            max_retry_delay=settings.retry_max_delay,
            user_agent=settings.user_agent,
            pool_limit=settings.http_pool_limit,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is not None and not self._session.closed:
            return self._session

        async with self._session_lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(limit=self.pool_limit)
                self._session = aiohttp.ClientSession(connector=connector)
                self._owns_session = True
                logger.debug(f"Created HTTP session (pool limit: {self.pool_limit})")
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed HTTP session")
        self._session = None

    async def send(self, notification: Notification) -> DeliveryResult:
        """
        Deliver a notification, retrying transient failures.

        Makes at most ``max_retries + 1`` attempts. Waits
        ``retry_delay * 2 ** (k - 1)`` before attempt ``k``. Cancelling the
        calling task during an attempt or a backoff wait aborts delivery
        immediately and no result is produced.
        """
        started = time.perf_counter()
        session = await self._get_session()
        headers = build_request_headers(notification, self.user_agent)
        body = notification.payload.body

        last_status = 0
        last_body: Optional[str] = None
        last_error: Optional[str] = None
        attempts = 0

        for attempt in range(notification.max_retries + 1):
            if attempt > 0:
                delay = compute_backoff_delay(
                    attempt=attempt,
                    base_delay=self.retry_delay,
                    max_delay=self.max_retry_delay,
                )
                logger.info(
                    "Retrying webhook %s, attempt %s/%s after %.0fms",
                    notification.id,
                    attempt,
                    notification.max_retries,
                    delay * 1000,
                )
                await self._sleep(delay)

            attempts += 1
            try:
                status, text = await self._attempt(session, notification, headers, body)
            except asyncio.TimeoutError:
                last_error = f"Request timed out after {notification.timeout_seconds}s"
                logger.warning(
                    "Webhook %s timed out after %ss",
                    notification.id,
                    notification.timeout_seconds,
                )
                continue
            except aiohttp.ClientError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(
                    "Webhook %s request failed: %s", notification.id, last_error
                )
                continue

            last_status, last_body = status, text

            if 200 <= status < 300:
                return DeliveryResult(
                    success=True,
                    status_code=status,
                    response_body=text,
                    duration=time.perf_counter() - started,
                    attempts=attempts,
                )

            last_error = f"HTTP {status}"
            logger.warning(
                "Webhook %s returned non-success status %s", notification.id, status
            )

        return DeliveryResult(
            success=False,
            status_code=last_status,
            response_body=last_body,
            error_message=f"Failed after {attempts} attempt(s): {last_error}",
            duration=time.perf_counter() - started,
            attempts=attempts,
        )

    async def _attempt(
        self,
        session: aiohttp.ClientSession,
        notification: Notification,
        headers: CIMultiDict,
        body: bytes,
    ) -> Tuple[int, str]:
        """One HTTP call bounded by the notification's timeout (request and body read)"""
        timeout = aiohttp.ClientTimeout(total=notification.timeout_seconds)
        async with session.request(
            notification.method.value,
            notification.url.value,
            data=body,
            headers=headers,
            timeout=timeout,
        ) as response:
            text = await response.text(errors="replace")
            return response.status, text
