"""Tests for the Langfuse switch: keys are read when traced code runs."""

from unittest.mock import MagicMock

import pytest
from openai import AsyncOpenAI

from ingredient_nutrition import observability
from ingredient_nutrition.observability import get_async_openai_class, observe, trace_context


class FakeLangfuseObserve:
    """Stands in for langfuse.observe and records which functions it wrapped."""

    def __init__(self):
        self.wrapped = []

    def __call__(self, name=None, **kwargs):
        def decorator(fn):
            self.wrapped.append(name)

            async def traced(*args, **kw):
                return ("traced", await fn(*args, **kw))
            return traced
        return decorator


def enable_tracing(monkeypatch):
    monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk-test")
    monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk-test")


@pytest.mark.asyncio
async def test_disabled_without_keys_calls_through():
    @observe(name="double")
    async def double(x):
        return x * 2

    assert not observability.is_tracing_enabled()
    assert await double(4) == 8


@pytest.mark.asyncio
async def test_keys_set_after_decoration_enable_tracing(monkeypatch):
    fake = FakeLangfuseObserve()
    monkeypatch.setattr(observability, "_lf_observe", fake)

    @observe(name="double")
    async def double(x):
        return x * 2

    # Keys arrive later, as with load_dotenv() in an entry point
    enable_tracing(monkeypatch)

    assert await double(4) == ("traced", 8)
    assert await double(5) == ("traced", 10)
    assert fake.wrapped == ["double"]


def test_sync_functions_keep_their_name():
    @observe()
    def ping():
        return "pong"

    assert ping() == "pong"
    assert ping.__name__ == "ping"


def test_trace_context_forwards_only_when_enabled(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr(observability, "_lf_get_client", lambda: client)

    trace_context.update_current_trace(metadata={"ingredient": "rice"})
    client.update_current_trace.assert_not_called()

    enable_tracing(monkeypatch)
    trace_context.update_current_trace(metadata={"ingredient": "rice"})
    client.update_current_trace.assert_called_once_with(metadata={"ingredient": "rice"})


def test_trace_context_swallows_client_errors(monkeypatch):
    enable_tracing(monkeypatch)
    client = MagicMock()
    client.score_current_trace.side_effect = RuntimeError("langfuse down")
    monkeypatch.setattr(observability, "_lf_get_client", lambda: client)

    trace_context.score_current_trace(name="match", value=1.0)


def test_plain_openai_class_without_keys():
    assert get_async_openai_class() is AsyncOpenAI
