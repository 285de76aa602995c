"""Unit-of-work runner for coordinator calls.

Every coordinator write goes through ``run_unit``: the whole
load-check-mutate-commit cycle is bounded by a timeout and re-run when the
optimistic ``row_version`` check fails, so concurrent appends to the same
aggregate are retried instead of lost. Raw persistence and filesystem errors
are translated to the service error taxonomy here.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

import config
from services.errors import (
    DuplicateKeyError,
    OperationTimeoutError,
    ServiceError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3


async def _rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except DBAPIError:
        logger.exception("Rollback failed")


async def _attempt_loop(
    session: AsyncSession,
    operation: Callable[[], Awaitable[Any]],
    *,
    name: str,
    attempts: int,
    duplicate_message: str,
) -> Any:
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            return await operation()
        except StaleDataError:
            await _rollback(session)
            logger.info("%s: concurrent modification, retrying (attempt %d/%d)", name, attempt, attempts)
        except ServiceError:
            await _rollback(session)
            raise
        except IntegrityError as e:
            await _rollback(session)
            raise DuplicateKeyError(duplicate_message) from e
        except DBAPIError as e:
            await _rollback(session)
            logger.error("%s: persistence failure: %s", name, e.__class__.__name__)
            raise UpstreamUnavailableError("Storage is temporarily unavailable") from e
        except OSError as e:
            await _rollback(session)
            logger.error("%s: blob store failure: %s", name, e)
            raise UpstreamUnavailableError("File storage is temporarily unavailable") from e

    raise UpstreamUnavailableError("Resource is being modified concurrently, please retry")


async def run_unit(
    session: AsyncSession,
    operation: Callable[[], Awaitable[Any]],
    *,
    name: str,
    timeout: float | None = None,
    attempts: int = DEFAULT_ATTEMPTS,
    duplicate_message: str = "Resource already exists",
) -> Any:
    """
    Run one coordinator operation with retry, timeout and error translation.

    ``operation`` must be re-runnable from scratch: it reloads the aggregate
    it mutates on every attempt.

    Args:
        session: Database session the operation uses
        operation: Zero-argument coroutine factory
        name: Operation name for log lines
        timeout: Seconds before the call fails (default from settings)
        attempts: Max attempts on optimistic-version conflicts
        duplicate_message: Message used when a unique constraint fires

    Returns:
        Whatever ``operation`` returns

    Raises:
        OperationTimeoutError: If the call does not finish within ``timeout``
        DuplicateKeyError: On unique-constraint violation
        UpstreamUnavailableError: On persistence/blob failure or exhausted retries
        ServiceError: Any taxonomy error raised by ``operation``
    """
    if timeout is None:
        timeout = config.settings.IO_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(
            _attempt_loop(
                session,
                operation,
                name=name,
                attempts=attempts,
                duplicate_message=duplicate_message,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as e:
        await _rollback(session)
        logger.warning("%s: timed out after %.2fs", name, timeout)
        raise OperationTimeoutError(f"Operation '{name}' timed out") from e
