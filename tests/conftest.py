"""Pytest configuration for the gate test suite.

Ledger, resolver and repository tests are coroutines marked with
``@pytest.mark.asyncio``. The hook below runs them on a fresh event loop so
the suite does not depend on ``pytest-asyncio`` being installed.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

import pytest


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: run the coroutine test on its own event loop")


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Drive marked coroutine tests with a private loop.

    Returns None for anything else so pytest (or an installed async plugin)
    handles the call normally.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    kwargs: dict[str, Any] = {
        arg: pyfuncitem.funcargs[arg]
        for arg in pyfuncitem._fixtureinfo.argnames
    }
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_func(**kwargs))
    finally:
        # Slot-expiry tasks a test left running.
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()
        asyncio.set_event_loop(asyncio.new_event_loop())
    return True
