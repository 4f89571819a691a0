"""Webhook alerts for source health transitions.

The health tracker calls ``HealthAlertDispatcher.enqueue`` synchronously when
a source degrades, recovers or is given a second chance. A background task
(``run``) drains the queue and posts each transition as JSON to the
configured webhook URL, retrying with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging

import httpx

from statwatch.reliability.health import HealthEvent, HealthTransition

logger = logging.getLogger(__name__)

_EVENT_TEXT = {
    HealthEvent.DEGRADED: "marked unhealthy",
    HealthEvent.RECOVERED: "healthy again",
    HealthEvent.SECOND_CHANCE: "given another chance",
}


class HealthAlertDispatcher:
    """Queues health transitions and delivers them to a webhook.

    Parameters
    ----------
    webhook_url:
        Destination URL. When ``None`` transitions are only logged.
    timeout_seconds:
        HTTP timeout per delivery attempt (default 10).
    max_retries:
        Maximum delivery attempts (default 3).
    backoff_base:
        Base backoff in seconds (default 2). Schedule: 2s, 4s, 8s.
    transport:
        Optional httpx transport, mainly for tests.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._transport = transport
        self._queue: asyncio.Queue[HealthTransition] = asyncio.Queue()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, transition: HealthTransition) -> None:
        """Health listener entry point; never blocks."""
        if self._webhook_url is None:
            return
        self._queue.put_nowait(transition)

    def build_payload(self, transition: HealthTransition) -> dict:
        """Build a Discord-compatible webhook body for a transition."""
        text = _EVENT_TEXT.get(transition.event, transition.event.value)
        return {
            "content": (
                f"{transition.source} API {text} for {transition.endpoint} "
                f"({transition.consecutive_failures} consecutive failures)"
            ),
            "event": transition.event.value,
            "endpoint": transition.endpoint,
            "source": transition.source,
        }

    async def run(self) -> None:
        """Deliver queued transitions until cancelled."""
        while True:
            transition = await self._queue.get()
            try:
                await self.deliver(transition)
            finally:
                self._queue.task_done()

    async def deliver(self, transition: HealthTransition) -> bool:
        """Post one transition with retries.

        Returns
        -------
        bool
            True if delivery succeeded, False if all retries were exhausted
            or no webhook is configured.
        """
        if not self._webhook_url:
            return False

        payload_bytes = json.dumps(self.build_payload(transition)).encode("utf-8")
        last_exception: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    response = await client.post(
                        self._webhook_url,
                        content=payload_bytes,
                        headers={"Content-Type": "application/json"},
                        timeout=self._timeout_seconds,
                    )

                if response.status_code < 400:
                    logger.info(
                        "Health alert delivered for %s/%s (status %d)",
                        transition.endpoint,
                        transition.source,
                        response.status_code,
                    )
                    return True

                last_exception = httpx.HTTPStatusError(
                    f"Webhook delivery returned {response.status_code}",
                    request=response.request,
                    response=response,
                )

            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                last_exception = exc

            backoff = self._backoff_base * (2**attempt)
            logger.warning(
                "Health alert delivery failed (attempt %d/%d), retrying in %.0fs",
                attempt + 1,
                self._max_retries,
                backoff,
            )
            if attempt < self._max_retries - 1:
                await asyncio.sleep(backoff)

        logger.error(
            "Health alert delivery failed after %d attempts: %s",
            self._max_retries,
            last_exception,
        )
        return False
