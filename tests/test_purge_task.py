"""
tests/test_purge_task.py -- The background session purge loop in api/main.py.

Covers:
  - The purge runs in a worker thread, off the event loop
  - A StoreUnavailable during one pass does not stop the loop
  - Cancel followed by gather (the lifespan shutdown sequence) ends the task
"""

from __future__ import annotations

import asyncio
import threading
from types import SimpleNamespace

from api.main import _purge_loop
from auth.errors import StoreUnavailable


def _fake_app(purge) -> SimpleNamespace:
    sessions = SimpleNamespace(purge_expired=purge)
    return SimpleNamespace(state=SimpleNamespace(gateway=SimpleNamespace(sessions=sessions)))


def test_purge_runs_off_loop_and_survives_store_failure():
    calls: list[int] = []

    def purge() -> int:
        calls.append(threading.get_ident())
        if len(calls) == 1:
            raise StoreUnavailable()
        return 0

    async def scenario():
        task = asyncio.create_task(_purge_loop(_fake_app(purge), 0))
        for _ in range(500):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        results = await asyncio.gather(task, return_exceptions=True)
        return task, results

    task, results = asyncio.run(scenario())

    assert len(calls) >= 2
    assert threading.get_ident() not in calls
    assert task.cancelled()
    assert isinstance(results[0], asyncio.CancelledError)
