"""Langfuse tracing for ingredient matching.

Tracing is switched on only when both LANGFUSE_PUBLIC_KEY and
LANGFUSE_SECRET_KEY are set. The environment is read when a decorated
function runs, not when it is decorated, so entry points can call
load_dotenv() after importing this package. Without keys `observe` calls
straight through and `trace_context` drops every annotation, so matching
code can annotate traces unconditionally.

    from ingredient_nutrition.observability import observe, trace_context

    @observe(name="find_best_match")
    async def find_best_match(...):
        trace_context.update_current_trace(metadata={"ingredient": name})
"""

import functools
import inspect
import logging
import os
from typing import Any, Callable, Optional

from langfuse import get_client as _lf_get_client
from langfuse import observe as _lf_observe
from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

_announced = False


def is_tracing_enabled() -> bool:
    global _announced
    enabled = bool(os.getenv("LANGFUSE_PUBLIC_KEY") and os.getenv("LANGFUSE_SECRET_KEY"))
    if enabled and not _announced:
        logger.info(
            f"Langfuse tracing ENABLED (host={os.getenv('LANGFUSE_HOST', 'http://localhost:3000')})"
        )
        _announced = True
    return enabled


def observe(name: Optional[str] = None, **kwargs) -> Callable:
    """Langfuse @observe() when tracing is enabled at call time, plain call otherwise."""

    def decorator(fn: Callable) -> Callable:
        traced: Optional[Callable] = None

        def resolve() -> Callable:
            nonlocal traced
            if not is_tracing_enabled():
                return fn
            if traced is None:
                traced = _lf_observe(name=name, **kwargs)(fn)
            return traced

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kw):
                return await resolve()(*args, **kw)
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kw):
            return resolve()(*args, **kw)
        return wrapper

    return decorator


class _TraceContext:
    """Forwards trace annotations to the Langfuse v3 client when tracing is on.

    Annotation failures are logged and never interrupt matching.
    """

    def _call(self, method: str, **kwargs: Any) -> None:
        if not is_tracing_enabled():
            return
        try:
            getattr(_lf_get_client(), method)(**kwargs)
        except Exception as e:
            logger.debug(f"Langfuse {method} failed: {e}")

    def update_current_trace(self, **kwargs: Any) -> None:
        self._call("update_current_trace", **kwargs)

    def update_current_span(self, **kwargs: Any) -> None:
        self._call("update_current_span", **kwargs)

    def score_current_trace(self, **kwargs: Any) -> None:
        self._call("score_current_trace", **kwargs)


trace_context = _TraceContext()


def get_async_openai_class():
    """AsyncOpenAI class to build oracle clients with.

    With tracing enabled this is the Langfuse-instrumented drop-in, which
    records every chat completion as a generation.
    """
    if is_tracing_enabled():
        from langfuse.openai import AsyncOpenAI as TracedAsyncOpenAI
        return TracedAsyncOpenAI
    return AsyncOpenAI
