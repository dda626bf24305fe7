import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from commerce_channel.logging_config import get_logger
from commerce_channel.services.errors import MediaUnavailable

logger = get_logger("retry")

# The gateway answers 404/409 while an attachment is still being processed.
MEDIA_PENDING_STATUSES = frozenset({404, 409})


def is_media_pending(status_code: int) -> bool:
    return status_code in MEDIA_PENDING_STATUSES


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 1.5
    is_retryable: Callable[[int], bool] = field(default=is_media_pending)


async def retry(
    operation: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    *,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> httpx.Response:
    """Run `operation` until it returns a 2xx response.

    Only statuses accepted by `policy.is_retryable` are retried, waiting
    `policy.delay_seconds` between attempts. Any other non-2xx status fails
    immediately; exhausting the attempts fails with the last status.
    """
    sleep = sleep or asyncio.sleep
    attempts = max(1, policy.max_attempts)
    last_status: Optional[int] = None

    for attempt in range(1, attempts + 1):
        response = await operation()
        if response.is_success:
            return response

        last_status = response.status_code
        if attempt < attempts and policy.is_retryable(last_status):
            logger.info(
                "Media not ready, retrying",
                extra={"context": {"attempt": attempt, "status": last_status, "delay": policy.delay_seconds}},
            )
            await sleep(policy.delay_seconds)
            continue

        raise MediaUnavailable(
            f"Failed to fetch media: {last_status} {response.reason_phrase}",
            status_code=last_status,
            attempts=attempt,
        )

    raise MediaUnavailable("Failed to fetch media", status_code=last_status, attempts=attempts)
