import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from homeport.storage.commands import CommandRunner


class HangingProcess:
    """A child that never exits on its own."""

    def __init__(self):
        self.returncode = None
        self.killed = False
        self.started = asyncio.Event()

    async def communicate(self):
        self.started.set()
        await asyncio.Event().wait()

    def kill(self):
        self.killed = True

    async def wait(self):
        self.returncode = -9
        return self.returncode


@pytest.mark.asyncio
async def test_cancelled_caller_kills_child():
    process = HangingProcess()
    with patch("homeport.storage.commands.asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
        call = asyncio.create_task(CommandRunner(timeout=60).run(["mdadm", "--create", "/dev/md/data1"]))
        await process.started.wait()
        call.cancel()

        with pytest.raises(asyncio.CancelledError):
            await call

    assert process.killed is True
    assert process.returncode == -9


@pytest.mark.asyncio
async def test_timeout_kills_child():
    process = HangingProcess()
    with patch("homeport.storage.commands.asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
        result = await CommandRunner().run(["zpool", "status"], timeout=0.05)

    assert process.killed is True
    assert result.returncode == -1
    assert result.stderr == "zpool timed out after 0.05 seconds"


@pytest.mark.asyncio
async def test_missing_binary():
    missing = AsyncMock(side_effect=FileNotFoundError())
    with patch("homeport.storage.commands.asyncio.create_subprocess_exec", missing):
        result = await CommandRunner().run(["mdadm", "--detail", "--scan"])

    assert result.returncode == 127
    assert result.success is False
    assert result.error_text("fallback") == "mdadm: command not found"
