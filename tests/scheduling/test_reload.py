"""Tests for ``ReloadController``: startup, reload swaps and termination."""

from __future__ import annotations

import asyncio
import os
import signal
import time

import pytest

from cronmutex.core.errors import DefinitionsParseError
from cronmutex.core.settings import CronmutexSettings
from cronmutex.execution import ExecutionLauncher
from cronmutex.scheduling import ReloadController

ONE_ENTRY = "- {name: a, cron: '@yearly', command: [/bin/true]}\n"
TWO_ENTRIES = ONE_ENTRY + "- {name: b, cron: '@hourly', command: [/bin/true]}\n"


@pytest.fixture
def cron_file(tmp_path):
    path = tmp_path / "cron.yml"
    path.write_text(ONE_ENTRY)
    return path


@pytest.fixture
def launcher() -> ExecutionLauncher:
    return ExecutionLauncher()


@pytest.fixture
def controller(cron_file, settings, lease_client, launcher) -> ReloadController:
    return ReloadController(cron_file, settings, lease_client, launcher)


class TestStart:
    @pytest.mark.asyncio
    async def test_initial_load(self, controller):
        assert await controller.start() is True

        assert controller.state.version == 1
        assert [e.name for e in controller.state.entries] == ["a"]
        assert controller.scheduler.is_running
        await controller.terminate()

    @pytest.mark.asyncio
    async def test_invalid_document_is_fatal(self, controller, cron_file):
        cron_file.write_text("- {name: a, cron: 'every tuesday', command: [x]}\n")

        with pytest.raises(DefinitionsParseError):
            await controller.start()
        assert controller.scheduler is None

    @pytest.mark.asyncio
    async def test_unreadable_file_is_retried(self, controller, cron_file):
        content = cron_file.read_text()
        cron_file.unlink()

        async def restore():
            await asyncio.sleep(0.35)
            cron_file.write_text(content)

        restorer = asyncio.create_task(restore())
        assert await controller.start() is True
        await restorer

        assert controller.state.version == 1
        await controller.terminate()

    @pytest.mark.asyncio
    async def test_terminate_while_retrying(self, controller, cron_file):
        cron_file.unlink()
        asyncio.get_running_loop().call_later(0.2, controller.request_terminate)

        assert await controller.start() is False
        assert controller.terminated
        assert controller.scheduler is None


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_swaps_scheduler(self, controller, cron_file):
        await controller.start()
        old = controller.scheduler

        cron_file.write_text(TWO_ENTRIES)
        assert await controller.reload() is True

        assert controller.state.version == 2
        assert [e.name for e in controller.state.entries] == ["a", "b"]
        assert controller.scheduler is not old
        assert not old.is_running
        assert controller.scheduler.is_running
        await controller.terminate()

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_current_scheduler(self, controller, cron_file):
        await controller.start()
        current = controller.scheduler

        cron_file.write_text("this: is: not: valid")
        assert await controller.reload() is False

        assert controller.scheduler is current
        assert current.is_running
        assert controller.state.version == 1

        cron_file.write_text(TWO_ENTRIES)
        assert await controller.reload() is True
        assert controller.state.version == 2
        await controller.terminate()

    @pytest.mark.asyncio
    async def test_reload_with_missing_file_keeps_scheduler(self, controller, cron_file):
        await controller.start()
        current = controller.scheduler
        cron_file.unlink()

        assert await controller.reload() is False
        assert controller.scheduler is current
        await controller.terminate()

    @pytest.mark.asyncio
    async def test_reload_before_start(self, controller):
        with pytest.raises(RuntimeError):
            await controller.reload()

    @pytest.mark.asyncio
    async def test_reload_does_not_touch_running_executions(self, controller, cron_file, launcher, py):
        await controller.start()
        entry = controller.state.entries[0].model_copy(update={"command": py("import time; time.sleep(0.6)")})
        task = controller.scheduler.fire(entry)
        await asyncio.sleep(0.2)

        cron_file.write_text(TWO_ENTRIES)
        await controller.reload()

        assert not task.done()
        assert (await task).succeeded
        await controller.terminate()


class TestTerminate:
    @pytest.mark.asyncio
    async def test_terminate_cancels_and_drains(self, controller, launcher, lease_client, py):
        await controller.start()
        entry = controller.state.entries[0].model_copy(update={"command": py("import time; time.sleep(30)")})
        task = controller.scheduler.fire(entry)
        await asyncio.sleep(0.3)

        await controller.terminate()

        assert not controller.scheduler.is_running
        assert task.done()
        result = task.result()
        try:
            assert result.cancelled
            assert lease_client.active() == []
        finally:
            try:
                os.kill(result.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass

    @pytest.mark.asyncio
    async def test_zero_drain_timeout_does_not_wait(self, cron_file, lease_client, launcher, py):
        settings = CronmutexSettings(daemon={"drain_timeout": 0})
        controller = ReloadController(cron_file, settings, lease_client, launcher)
        await controller.start()
        entry = controller.state.entries[0].model_copy(update={"command": py("import time; time.sleep(0.5)")})
        task = controller.scheduler.fire(entry)
        await asyncio.sleep(0.2)

        started = time.monotonic()
        await controller.terminate()

        assert time.monotonic() - started < 0.2
        await task


class TestRun:
    @pytest.mark.asyncio
    async def test_serves_requests_until_terminated(self, controller, cron_file):
        runner = asyncio.create_task(controller.run())
        await asyncio.sleep(0.1)
        assert controller.state.version == 1

        cron_file.write_text(TWO_ENTRIES)
        controller.request_reload()
        await asyncio.sleep(0.1)
        assert controller.state.version == 2

        controller.request_terminate()
        await asyncio.wait_for(runner, timeout=5)
        assert controller.terminated
        assert not controller.scheduler.is_running

    @pytest.mark.asyncio
    async def test_run_propagates_startup_parse_error(self, controller, cron_file):
        cron_file.write_text("{not: a list}\n")
        with pytest.raises(DefinitionsParseError):
            await controller.run()
