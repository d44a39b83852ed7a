"""
Best-effort notification delivery.

Dispatches run as background tasks with bounded retry and a per-attempt
timeout. A failed notification is logged and dropped; it never reaches
the caller of the transition that triggered it.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from gatepass.core.config import get_settings
from gatepass.core.logging import get_logger
from gatepass.domain.models import NotificationKind
from gatepass.domain.ports import NotificationDispatcher

logger = get_logger(__name__)

T = TypeVar("T")


class NotificationRejected(Exception):
    """The transport answered but did not accept the notification."""


async def with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay_seconds: float = 0.2,
    max_delay_seconds: float = 2.0,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """
    Await func until it succeeds, backing off exponentially between tries.

    Args:
        func: Zero-argument coroutine factory.
        attempts: Total number of tries.
        base_delay_seconds: Delay after the first failure.
        max_delay_seconds: Cap on any single delay.
        on_retry: Called with (attempt, delay, error) before sleeping.

    Returns:
        The first successful result.

    Raises:
        Exception: The last error once attempts are exhausted.
    """
    if attempts <= 1:
        return await func()
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except Exception as exc:
            last_exc = exc
            if attempt >= attempts:
                break
            delay = min(base_delay_seconds * (2 ** (attempt - 1)), max_delay_seconds)
            if on_retry:
                on_retry(attempt, delay, exc)
            await asyncio.sleep(delay)
    if last_exc is None:
        raise RuntimeError("RETRY_FAILED")
    raise last_exc


class NotificationRelay:
    """
    Fire-and-forget wrapper around a NotificationDispatcher.

    Example:
        relay = NotificationRelay(WebhookNotificationDispatcher(url))
        relay.dispatch("res-1", NotificationKind.NEW_REQUEST, {...})
        await relay.drain()
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        attempts: int | None = None,
        base_delay_seconds: float | None = None,
        max_delay_seconds: float | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Initialize relay.

        Args:
            dispatcher: Underlying transport.
            attempts: Tries per notification, defaults from settings.
            base_delay_seconds: First retry delay, defaults from settings.
            max_delay_seconds: Retry delay cap, defaults from settings.
            timeout_seconds: Per-attempt timeout, defaults from settings.
        """
        settings = get_settings()
        self._dispatcher = dispatcher
        self._attempts = attempts or settings.notification_retry_attempts
        self._base_delay = (
            base_delay_seconds
            if base_delay_seconds is not None
            else settings.notification_retry_base_delay_seconds
        )
        self._max_delay = (
            max_delay_seconds
            if max_delay_seconds is not None
            else settings.notification_retry_max_delay_seconds
        )
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of dispatches still in flight."""
        return len(self._tasks)

    def dispatch(
        self,
        target_reference: str,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        """
        Schedule a notification and return immediately.

        Must be called from inside a running event loop.
        """
        task = asyncio.create_task(self.deliver(target_reference, kind, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(
        self,
        target_reference: str,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> bool:
        """
        Deliver one notification with retries.

        Returns:
            bool: True if the transport accepted it. Never raises.
        """

        async def attempt() -> bool:
            accepted = await asyncio.wait_for(
                self._dispatcher.notify(target_reference, kind, payload),
                timeout=self._timeout,
            )
            if not accepted:
                raise NotificationRejected(kind.value)
            return True

        def on_retry(attempt_no: int, delay: float, exc: Exception) -> None:
            logger.warning(
                "notification_retry",
                kind=kind.value,
                attempt=attempt_no,
                delay=delay,
                error=repr(exc),
            )

        try:
            await with_retry(
                attempt,
                attempts=self._attempts,
                base_delay_seconds=self._base_delay,
                max_delay_seconds=self._max_delay,
                on_retry=on_retry,
            )
        except Exception as e:
            logger.error(
                "notification_failed",
                kind=kind.value,
                attempts=self._attempts,
                error=repr(e),
            )
            return False

        logger.info("notification_delivered", kind=kind.value)
        return True

    async def drain(self) -> None:
        """Wait for every scheduled dispatch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
