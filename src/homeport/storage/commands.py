"""Bounded execution of the host tools the storage core drives."""

import asyncio
import logging
import shlex
import shutil
from dataclasses import dataclass
from typing import List, Optional

from homeport.config.settings import config

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def error_text(self, fallback: str) -> str:
        return self.stderr.strip() or self.stdout.strip() or fallback


class CommandRunner:
    """
    Runs external commands as argv lists without a shell.
    Failures are reported through CommandResult, never raised.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else config.command_timeout

    async def run(self, args: List[str], timeout: Optional[float] = None) -> CommandResult:
        limit = timeout if timeout is not None else self.timeout
        logger.debug("Running command: %s", shlex.join(args))

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CommandResult(127, "", f"{args[0]}: command not found")
        except OSError as e:
            return CommandResult(126, "", f"{args[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.error("Command timed out after %ss: %s", limit, shlex.join(args))
            return CommandResult(-1, "", f"{args[0]} timed out after {limit:g} seconds")
        except asyncio.CancelledError:
            logger.warning("Killing %s, its caller was cancelled", args[0])
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            raise

        result = CommandResult(
            process.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )
        if not result.success:
            logger.debug("Command %s exited with %s: %s", args[0], result.returncode, result.stderr.strip())
        return result

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def read_text(self, path: str) -> str:
        try:
            with open(path, "r") as f:
                return f.read()
        except OSError as e:
            logger.debug("Could not read %s: %s", path, e)
            return ""

    def append_text(self, path: str, text: str):
        with open(path, "a") as f:
            f.write(text)
