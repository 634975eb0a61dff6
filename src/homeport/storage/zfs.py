import logging
from enum import Enum

from homeport.config.settings import config
from homeport.jobs.manager import TaskLedger
from homeport.storage.commands import CommandRunner
from homeport.storage.exceptions import StepFailed
from homeport.storage.models import ZfsLayout, ZfsRequest
from homeport.storage.pipeline import Provisioner
from homeport.storage.validation import DeviceLeases

logger = logging.getLogger(__name__)


class ZfsStep(str, Enum):
    WIPE = "wipe"
    CREATE = "create"
    COMPRESSION = "compression"
    DONE = "done"


class ZfsProvisioner(Provisioner):
    """wipe (20%) -> zpool create (50%) -> compression (80%, best effort) -> done"""

    STEPS = {
        ZfsStep.WIPE: (20, "Wiping device signatures..."),
        ZfsStep.CREATE: (50, "Creating ZFS pool..."),
        ZfsStep.COMPRESSION: (80, "Enabling compression..."),
    }

    def __init__(
        self,
        request: ZfsRequest,
        ledger: TaskLedger,
        runner: CommandRunner,
        leases: DeviceLeases,
    ):
        super().__init__(ledger, runner, leases, request.devices)
        self.request = request

    @property
    def first_step(self) -> ZfsStep:
        return ZfsStep.WIPE

    @property
    def done_step(self) -> ZfsStep:
        return ZfsStep.DONE

    def transition(self, step: ZfsStep) -> ZfsStep:
        if step == ZfsStep.WIPE:
            return ZfsStep.CREATE
        if step == ZfsStep.CREATE:
            return ZfsStep.COMPRESSION
        return ZfsStep.DONE

    async def execute(self, step: ZfsStep):
        if step == ZfsStep.WIPE:
            await self.wipe_signatures()
        elif step == ZfsStep.CREATE:
            await self.create_pool()
        elif step == ZfsStep.COMPRESSION:
            await self.enable_compression()

    def create_command(self):
        # Devices were validated as unused, so -f only overrides stale labels
        args = ["zpool", "create", "-f", self.request.name]
        if self.request.layout != ZfsLayout.SINGLE:
            args.append(self.request.layout.value)
        return args + self.request.devices

    async def create_pool(self):
        result = await self.runner.run(self.create_command())
        if not result.success:
            raise StepFailed(ZfsStep.CREATE.value, result.error_text("zpool create failed"))

    async def enable_compression(self):
        result = await self.runner.run(
            ["zfs", "set", f"compression={config.zfs_compression}", self.request.name]
        )
        if not result.success:
            self.warn(f"Could not enable compression: {result.error_text('zfs set failed')}")

    def success_message(self) -> str:
        return f'ZFS pool "{self.request.name}" created successfully'

    def failure_message(self) -> str:
        return "Failed to create ZFS pool"
