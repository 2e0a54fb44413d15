"""Pytest configuration for euibridge tests."""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import logging

import pytest
import uvloop

from euibridge.protocol.protocol import MessageType
from euibridge.registry import StaticVariableRegistry, Variable
from euibridge.services.engine import TargetEngine

_HAS_PYTEST_ASYNCIO = importlib.util.find_spec("pytest_asyncio") is not None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test to run on asyncio loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Fallback asyncio runner when pytest-asyncio is unavailable."""
    if _HAS_PYTEST_ASYNCIO:
        return None
    if "asyncio" not in pyfuncitem.keywords:
        return None
    test_function = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_function):
        return None

    loop = uvloop.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop.run_until_complete(test_function(**kwargs))
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        except (RuntimeError, ValueError):
            pass
        loop.close()
        asyncio.set_event_loop(None)
    return True


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)


@pytest.fixture
def blink_registry() -> StaticVariableRegistry:
    """The "hello blink" variable set with lit_time clamped to 50..1000."""
    return StaticVariableRegistry(
        [
            Variable(identifier=b"led_blink", kind=MessageType.UINT8, value=1),
            Variable(identifier=b"led_state", kind=MessageType.UINT8, value=0, writable=False),
            Variable(identifier=b"lit_time", kind=MessageType.UINT16, value=200, minimum=50, maximum=1000),
        ],
        clamp=True,
    )


@pytest.fixture
def abc_registry() -> StaticVariableRegistry:
    """Writable A, B, C with a read-only variable between B and C."""
    return StaticVariableRegistry(
        [
            Variable(identifier=b"A", kind=MessageType.UINT8, value=1),
            Variable(identifier=b"B", kind=MessageType.INT16, value=-2),
            Variable(identifier=b"ro", kind=MessageType.UINT8, value=9, writable=False),
            Variable(identifier=b"C", kind=MessageType.CHAR, value=b"abc", length=8),
        ]
    )


@pytest.fixture
def engine(blink_registry: StaticVariableRegistry) -> TargetEngine:
    return TargetEngine(blink_registry)
