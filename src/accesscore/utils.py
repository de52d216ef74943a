"""Shared I/O helpers for collaborator calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .exceptions import AccessControlError, ResolutionFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def guarded_call(
    awaitable: Awaitable[T],
    *,
    stage: str,
    timeout: Optional[float] = None,
) -> T:
    """Await a store or cache call, surfacing failures as ResolutionFailedError.

    Engine errors (``AccessControlError``) pass through untouched so
    structural errors keep their type. Timeouts and any other exception are
    wrapped with the failing ``stage`` and chained as ``__cause__``.

    Args:
        awaitable: The collaborator call.
        stage: Stage label (``role_store``, ``resource_store``, ``distributed_cache``).
        timeout: Seconds before the call is abandoned. None = no timeout.
    """
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except AccessControlError:
        raise
    except asyncio.TimeoutError as e:
        logger.error("%s call timed out after %.3fs", stage, timeout)
        raise ResolutionFailedError(f"{stage} timed out after {timeout}s", stage=stage) from e
    except Exception as e:
        logger.error("%s call failed: %s", stage, e)
        raise ResolutionFailedError(f"{stage} failure: {e}", stage=stage) from e


__all__ = ["guarded_call"]
