"""Tests for logged background tasks."""

import asyncio
import logging

import pytest

from vrcam_bridge.core.asyncio_utils import cancel_and_wait, create_logged_task


class TestCreateLoggedTask:

    @pytest.mark.asyncio
    async def test_exception_is_logged_immediately(self, caplog):
        async def boom():
            raise RuntimeError("kaput")

        with caplog.at_level(logging.ERROR):
            task = create_logged_task(boom(), context="boom-task")
            with pytest.raises(RuntimeError):
                await task
            await asyncio.sleep(0)
        assert "Unhandled exception in boom-task" in caplog.text
        assert task.get_name() == "boom-task"

    @pytest.mark.asyncio
    async def test_pending_set_tracks_task(self):
        pending = set()
        gate = asyncio.Event()

        async def waiter():
            await gate.wait()

        task = create_logged_task(waiter(), pending=pending)
        assert task in pending
        gate.set()
        await task
        await asyncio.sleep(0)
        assert task not in pending

    @pytest.mark.asyncio
    async def test_cancellation_is_not_logged(self, caplog):
        task = create_logged_task(asyncio.sleep(10), context="sleeper")
        with caplog.at_level(logging.ERROR):
            await cancel_and_wait(task)
            await asyncio.sleep(0)
        assert task.cancelled()
        assert "sleeper" not in caplog.text


class TestCancelAndWait:

    @pytest.mark.asyncio
    async def test_none_and_done_tasks(self):
        await cancel_and_wait(None)
        task = asyncio.create_task(asyncio.sleep(0))
        await task
        await cancel_and_wait(task)
        assert task.done()
