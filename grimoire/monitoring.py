"""Start/success/failure logging with durations for endpoint handlers."""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Callable

logger = logging.getLogger("crystal_grimoire")


def _duration_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)


def with_monitoring(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Wrap a sync or async handler; exceptions are logged and re-raised unchanged."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                logger.info("%s invoked stage=start", name)
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error(
                        "%s failed stage=error duration_ms=%s error_type=%s error=%s",
                        name,
                        _duration_ms(started),
                        type(e).__name__,
                        str(e),
                    )
                    raise
                logger.info("%s succeeded stage=success duration_ms=%s", name, _duration_ms(started))
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            logger.info("%s invoked stage=start", name)
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    "%s failed stage=error duration_ms=%s error_type=%s error=%s",
                    name,
                    _duration_ms(started),
                    type(e).__name__,
                    str(e),
                )
                raise
            logger.info("%s succeeded stage=success duration_ms=%s", name, _duration_ms(started))
            return result

        return sync_wrapper

    return decorator
