from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

import structlog
from aws_xray_sdk.core import patch as xray_patch
from aws_xray_sdk.core import xray_recorder

logger = structlog.get_logger()

T = TypeVar("T", bound=Callable[..., Any])


def init_xray(service_name: str = "orgtree") -> None:
    """Initialize X-Ray tracing and instrument botocore calls."""
    try:
        xray_recorder.configure(service=service_name, context_missing="LOG_ERROR")
        xray_patch(["aioboto3"])
        logger.info("xray_initialized", service=service_name)
    except Exception as exc:
        logger.warning("xray_init_failed", error=str(exc))


def trace_async(name: str | None = None) -> Callable[[T], T]:
    """Wrap an async function in an X-Ray subsegment."""

    def decorator(func: T) -> T:
        segment_name = name or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                with xray_recorder.capture(segment_name):
                    return await func(*args, **kwargs)
            except Exception as exc:
                subsegment = xray_recorder.current_subsegment()
                if subsegment is not None:
                    subsegment.put_annotation("error", str(exc))
                raise

        return wrapper  # type: ignore

    return decorator
