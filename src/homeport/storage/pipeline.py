"""
Step-by-step driver for provisioning pipelines.

A provisioner is a small state machine: an enum of steps, a transition
function and an executor per step. The driver advances it one step at a time,
records progress in the task ledger, and stops on failure or cancellation.
"""

import asyncio
import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Dict, List, Tuple

from homeport.jobs.manager import TaskLedger
from homeport.jobs.models import TaskStatus
from homeport.storage.commands import CommandRunner
from homeport.storage.exceptions import StepFailed
from homeport.storage.validation import DeviceLeases

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative cancellation. Checked between steps only; a command that has
    already started is allowed to finish. Once the last step has started the
    token is closed and further cancel requests are refused.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled = False
        self._closed = False

    def cancel(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._cancelled = True
            return True

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def checkpoint(self, last: bool = False) -> bool:
        """Returns True when cancelled; closes the token when ``last`` is set."""
        with self._lock:
            if not self._cancelled and last:
                self._closed = True
            return self._cancelled


class Provisioner:
    """Base class for the RAID and ZFS pipelines."""

    # (progress, message) shown while a step runs; filled in by subclasses
    STEPS: Dict[Enum, Tuple[int, str]] = {}

    def __init__(
        self,
        ledger: TaskLedger,
        runner: CommandRunner,
        leases: DeviceLeases,
        devices: List[str],
    ):
        self.ledger = ledger
        self.runner = runner
        self.leases = leases
        self.devices = list(devices)
        self.warnings: List[str] = []

    @property
    def first_step(self) -> Enum:
        raise NotImplementedError

    @property
    def done_step(self) -> Enum:
        raise NotImplementedError

    def transition(self, step: Enum) -> Enum:
        raise NotImplementedError

    async def execute(self, step: Enum):
        raise NotImplementedError

    def success_message(self) -> str:
        raise NotImplementedError

    def failure_message(self) -> str:
        raise NotImplementedError

    def describe(self, step: Enum) -> Tuple[int, str]:
        return self.STEPS[step]

    def warn(self, message: str):
        logger.warning(message)
        self.warnings.append(message)

    async def wipe_signatures(self):
        for device in self.devices:
            result = await self.runner.run(["wipefs", "-a", device])
            if not result.success:
                logger.warning("wipefs on %s failed: %s", device, result.error_text("no output"))

    async def run(self, task_id: str, token: CancellationToken):
        step = self.first_step
        try:
            while step != self.done_step:
                if token.checkpoint(last=self.transition(step) == self.done_step):
                    raise StepFailed(step.value, f"Cancelled before {step.value}")
                progress, message = self.describe(step)
                self.ledger.update(
                    task_id, status=TaskStatus.RUNNING, progress=progress, message=message
                )
                logger.info("Task %s: %s", task_id, message)
                await self.execute(step)
                step = self.transition(step)

            message = self.success_message()
            if self.warnings:
                message = f"{message} (with {len(self.warnings)} warning(s))"
            self.ledger.update(
                task_id,
                status=TaskStatus.COMPLETED,
                progress=100,
                message=message,
                warnings=self.warnings,
                completed_at=datetime.now(),
            )
            logger.info("Task %s completed", task_id)
        except asyncio.CancelledError:
            logger.warning("Task %s was interrupted", task_id)
            self._fail(task_id, "Cancelled")
            raise
        except StepFailed as e:
            logger.error("Task %s failed at %s: %s", task_id, e.step, e.message)
            self._fail(task_id, e.message)
        except Exception as e:
            logger.exception("Task %s failed", task_id)
            self._fail(task_id, str(e) or self.failure_message())
        finally:
            self.leases.release(self.devices)

    def _fail(self, task_id: str, error: str):
        self.ledger.update(
            task_id,
            status=TaskStatus.FAILED,
            error=error,
            warnings=self.warnings,
            completed_at=datetime.now(),
        )
