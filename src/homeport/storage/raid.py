import logging
import re
from enum import Enum
from typing import Tuple

from homeport.config.settings import config
from homeport.jobs.manager import TaskLedger
from homeport.storage.commands import CommandRunner
from homeport.storage.exceptions import StepFailed
from homeport.storage.models import Filesystem, RaidRequest
from homeport.storage.pipeline import Provisioner
from homeport.storage.validation import DeviceLeases

logger = logging.getLogger(__name__)


class RaidStep(str, Enum):
    WIPE = "wipe"
    CREATE = "create"
    PERSIST_CONFIG = "persist_config"
    FORMAT = "format"
    DONE = "done"


class RaidProvisioner(Provisioner):
    """
    Creates an md array:

    wipe (10%) -> mdadm --create (20%) -> mdadm.conf + initramfs (60%)
    -> mkfs, when a filesystem was requested (80%) -> done (100%)

    The config step is best effort: a failure there leaves a working array
    that may not reassemble under the same name after reboot, so it is
    recorded as a warning on the task instead of failing it.
    """

    STEPS = {
        RaidStep.WIPE: (10, "Wiping device signatures..."),
        RaidStep.CREATE: (20, "Creating RAID array..."),
        RaidStep.PERSIST_CONFIG: (60, "Updating mdadm configuration..."),
        RaidStep.FORMAT: (80, "Formatting array..."),
    }

    def __init__(
        self,
        request: RaidRequest,
        ledger: TaskLedger,
        runner: CommandRunner,
        leases: DeviceLeases,
    ):
        super().__init__(ledger, runner, leases, request.devices)
        self.request = request

    @property
    def md_path(self) -> str:
        return f"/dev/md/{self.request.name}"

    @property
    def first_step(self) -> RaidStep:
        return RaidStep.WIPE

    @property
    def done_step(self) -> RaidStep:
        return RaidStep.DONE

    def transition(self, step: RaidStep) -> RaidStep:
        if step == RaidStep.WIPE:
            return RaidStep.CREATE
        if step == RaidStep.CREATE:
            return RaidStep.PERSIST_CONFIG
        if step == RaidStep.PERSIST_CONFIG:
            if self.request.filesystem == Filesystem.NONE:
                return RaidStep.DONE
            return RaidStep.FORMAT
        return RaidStep.DONE

    def describe(self, step: RaidStep) -> Tuple[int, str]:
        if step == RaidStep.FORMAT:
            return 80, f"Formatting with {self.request.filesystem.value}..."
        return super().describe(step)

    async def execute(self, step: RaidStep):
        if step == RaidStep.WIPE:
            await self.wipe_signatures()
        elif step == RaidStep.CREATE:
            await self.create_array()
        elif step == RaidStep.PERSIST_CONFIG:
            await self.persist_config()
        elif step == RaidStep.FORMAT:
            await self.format_array()

    def create_command(self):
        return [
            "mdadm", "--create", self.md_path,
            f"--level={self.request.level.md_level}",
            f"--raid-devices={len(self.request.devices)}",
            *self.request.devices,
            "--run",
        ]

    async def create_array(self):
        result = await self.runner.run(self.create_command())
        if not result.success:
            raise StepFailed(RaidStep.CREATE.value, result.error_text("mdadm command failed"))

    def _scan_lines(self, scan_output: str):
        name_re = re.compile(rf"\bname=(\S+:)?{re.escape(self.request.name)}(\s|$)")
        lines = []
        for line in scan_output.splitlines():
            fields = line.split()
            if len(fields) > 1 and fields[0] == "ARRAY" and (
                fields[1] == self.md_path or name_re.search(line)
            ):
                lines.append(line.strip())
        return lines

    async def persist_config(self):
        scan = await self.runner.run(["mdadm", "--detail", "--scan"])
        if not scan.success:
            self.warn(f"Could not read array definition: {scan.error_text('mdadm --detail --scan failed')}")
            return

        lines = self._scan_lines(scan.stdout)
        if not lines:
            self.warn(f"{self.md_path} missing from mdadm --detail --scan; not added to {config.mdadm_conf_path}")
            return

        existing = self.runner.read_text(config.mdadm_conf_path)
        new_lines = [line for line in lines if line not in existing]
        if new_lines:
            try:
                self.runner.append_text(config.mdadm_conf_path, "\n".join(new_lines) + "\n")
            except OSError as e:
                self.warn(f"Could not update {config.mdadm_conf_path}: {e}")
                return

        initramfs = await self.runner.run(["update-initramfs", "-u"])
        if not initramfs.success:
            self.warn(f"Could not rebuild initramfs: {initramfs.error_text('update-initramfs failed')}")

    async def format_array(self):
        fs = self.request.filesystem.value
        result = await self.runner.run([f"mkfs.{fs}", self.md_path])
        if not result.success:
            raise StepFailed(RaidStep.FORMAT.value, result.error_text("Formatting failed"))

    def success_message(self) -> str:
        return f"{self.request.level.value.upper()} array created successfully"

    def failure_message(self) -> str:
        return "Failed to create RAID array"
