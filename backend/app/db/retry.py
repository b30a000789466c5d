# backend/app/db/retry.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.errors import Upstream

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_BACKOFF_SECONDS = 0.2


async def retry_once(
    operation: Callable[[], Awaitable[T]],
    session: Optional[AsyncSession] = None,
    backoff: float = RETRY_BACKOFF_SECONDS,
) -> T:
    """
    Run an idempotent read, retrying a single time on a transient
    OperationalError. Writes must not go through here: a conditional
    UPDATE that timed out may still have been applied.
    """
    try:
        return await operation()
    except OperationalError as exc:
        logger.warning("Transient datastore error, retrying once: %s", exc)
        if session is not None:
            await session.rollback()
        await asyncio.sleep(backoff)
        try:
            return await operation()
        except OperationalError as retry_exc:
            logger.error("Datastore still unavailable: %s", retry_exc)
            raise Upstream() from retry_exc
