from __future__ import annotations

import pytest
from sse_starlette.sse import AppStatus


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    # sse-starlette caches its shutdown event on the class; each test runs on
    # a fresh event loop.
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None
