import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set, Union

from homeport.config.settings import config
from homeport.jobs.manager import TaskLedger
from homeport.jobs.models import StorageTask, TaskAction, TaskStatus, TaskType
from homeport.storage.commands import CommandRunner
from homeport.storage.devices import probe_disks
from homeport.storage.exceptions import StorageValidationError
from homeport.storage.membership import read_member_sets, resolve_membership
from homeport.storage.models import (
    CreateResult,
    Filesystem,
    RaidArray,
    RaidLevel,
    RaidSyncProgress,
    StorageDiscovery,
    ZfsLayout,
    ZfsPool,
    ZfsScanProgress,
)
from homeport.storage.parsers import (
    detect_zpool_layout,
    format_bytes,
    parse_mdadm_detail,
    parse_mdstat,
    parse_zpool_devices,
    parse_zpool_list,
)
from homeport.storage.pipeline import CancellationToken, Provisioner
from homeport.storage.progress import get_raid_progress, get_zfs_progress
from homeport.storage.raid import RaidProvisioner
from homeport.storage.validation import RAID_TOOL, ZFS_TOOL, DeviceLeases, Validator
from homeport.storage.zfs import ZfsProvisioner

logger = logging.getLogger(__name__)


class StorageManager:
    """
    Entry point for storage discovery and provisioning.

    Create calls validate synchronously and return as soon as the task is
    registered; the pipeline itself runs as a background asyncio task and
    reports through the ledger.
    """

    def __init__(
        self,
        ledger: Optional[TaskLedger] = None,
        runner: Optional[CommandRunner] = None,
        leases: Optional[DeviceLeases] = None,
    ):
        self.ledger = ledger or TaskLedger()
        self.runner = runner or CommandRunner()
        self.leases = leases or DeviceLeases()
        self.validator = Validator(self.runner, self.leases)
        self._tokens: Dict[str, CancellationToken] = {}
        self._background: Set[asyncio.Task] = set()

    async def discover(self) -> StorageDiscovery:
        zfs_available = bool(self.runner.which(ZFS_TOOL))
        raid_available = bool(self.runner.which(RAID_TOOL))

        disks = await probe_disks(self.runner)
        raid_members, zfs_members = await read_member_sets(self.runner, zfs_available)
        resolve_membership(disks, raid_members, zfs_members)

        return StorageDiscovery(
            disks=disks,
            raid_arrays=await self.list_raid_arrays(with_detail=raid_available),
            zfs_pools=await self.list_zfs_pools() if zfs_available else [],
            zfs_tool_available=zfs_available,
            raid_tool_available=raid_available,
        )

    async def list_raid_arrays(self, with_detail: bool = True) -> List[RaidArray]:
        arrays = parse_mdstat(self.runner.read_text(config.mdstat_path))
        if not with_detail:
            return arrays

        for array in arrays:
            result = await self.runner.run(["mdadm", "--detail", array.path], timeout=config.probe_timeout)
            if not result.success:
                logger.debug("mdadm --detail %s failed: %s", array.path, result.error_text("no output"))
                continue
            detail = parse_mdadm_detail(result.stdout)
            if "size" in detail:
                array.size = format_bytes(detail["size"])
            if "state" in detail:
                array.state = detail["state"]
        return arrays

    async def list_zfs_pools(self) -> List[ZfsPool]:
        result = await self.runner.run(
            ["zpool", "list", "-H", "-o", "name,size,alloc,free,health"],
            timeout=config.probe_timeout,
        )
        if not result.success:
            logger.warning("zpool list failed: %s", result.error_text("no output"))
            return []

        pools = []
        for row in parse_zpool_list(result.stdout):
            status = await self.runner.run(["zpool", "status", "-P", row["name"]], timeout=config.probe_timeout)
            status_text = status.stdout if status.success else ""
            pools.append(ZfsPool(
                name=row["name"],
                health=row["health"] or "UNKNOWN",
                size=row["size"],
                allocated=row["allocated"],
                free=row["free"],
                devices=parse_zpool_devices(status_text),
                layout=detect_zpool_layout(status_text),
            ))
        return pools

    async def create_raid(
        self,
        name: str,
        level: Union[str, RaidLevel],
        devices: List[str],
        filesystem: Optional[Union[str, Filesystem]] = None,
    ) -> CreateResult:
        try:
            request = await self.validator.validate_raid(name, level, devices, filesystem)
        except StorageValidationError as e:
            logger.info("Rejected RAID create request for %r: %s", name, e.message)
            return CreateResult(accepted=False, error=e.message)

        task_id = self.ledger.register(StorageTask(
            type=TaskType.RAID,
            action=TaskAction.CREATE,
            status=TaskStatus.PENDING,
            message=f"Creating {request.level.value.upper()} array...",
            target=request.name,
            devices=request.devices,
        ))
        self._start(task_id, RaidProvisioner(request, self.ledger, self.runner, self.leases))
        return CreateResult(accepted=True, task_id=task_id)

    async def create_zfs_pool(
        self,
        name: str,
        layout: Union[str, ZfsLayout],
        devices: List[str],
    ) -> CreateResult:
        try:
            request = await self.validator.validate_zfs(name, layout, devices)
        except StorageValidationError as e:
            logger.info("Rejected ZFS create request for %r: %s", name, e.message)
            return CreateResult(accepted=False, error=e.message)

        task_id = self.ledger.register(StorageTask(
            type=TaskType.ZFS,
            action=TaskAction.CREATE,
            status=TaskStatus.PENDING,
            message=f"Creating ZFS pool with {request.layout.value} layout...",
            target=request.name,
            devices=request.devices,
        ))
        self._start(task_id, ZfsProvisioner(request, self.ledger, self.runner, self.leases))
        return CreateResult(accepted=True, task_id=task_id)

    def _start(self, task_id: str, provisioner: Provisioner):
        token = CancellationToken()
        self._tokens[task_id] = token
        background = asyncio.create_task(provisioner.run(task_id, token))
        self._background.add(background)

        def _finished(done: asyncio.Task):
            self._background.discard(done)
            self._tokens.pop(task_id, None)

        background.add_done_callback(_finished)

    async def wait_for_tasks(self):
        """Waits until every pipeline started by this manager has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def cancel_task(self, task_id: str) -> bool:
        """
        Stops a pipeline before its next step. Returns False when the task is
        unknown, already finished, or already running its last step.
        """
        token = self._tokens.get(task_id)
        if token is None or not token.cancel():
            return False
        logger.info("Cancellation requested for task %s", task_id)
        return True

    def get_task(self, task_id: str) -> Optional[StorageTask]:
        return self.ledger.get(task_id)

    def list_tasks(self) -> List[StorageTask]:
        return self.ledger.list_all()

    def subscribe(self, task_id: str, callback: Callable[[StorageTask], None]) -> Callable[[], None]:
        return self.ledger.subscribe(task_id, callback)

    async def get_raid_progress(self) -> List[RaidSyncProgress]:
        return await get_raid_progress(self.runner)

    async def get_zfs_progress(self) -> List[ZfsScanProgress]:
        return await get_zfs_progress(self.runner)
