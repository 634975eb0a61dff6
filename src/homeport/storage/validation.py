"""
Safety checks run before any destructive storage operation.

Nothing in here touches a device. The only state a successful validation
leaves behind is an in-memory lease on the requested devices, held until
the provisioning pipeline finishes.
"""

import logging
import re
import threading
from typing import Iterable, List, Optional, Set, Union

from homeport.storage.commands import CommandRunner
from homeport.storage.devices import build_disk_tree, list_block_devices
from homeport.storage.exceptions import DeviceBusyError, StorageValidationError
from homeport.storage.membership import find_device, read_member_sets, resolve_membership
from homeport.storage.models import (
    Disk,
    Filesystem,
    RaidLevel,
    RaidRequest,
    ZfsLayout,
    ZfsRequest,
)

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,32}$")
DEVICE_PATH_RE = re.compile(r"^/dev/(sd[a-z]+|nvme\d+n\d+(p\d+)?|vd[a-z]+)$")

RAID_TOOL = "mdadm"
ZFS_TOOL = "zpool"

RAID_MIN_DEVICES = {
    RaidLevel.RAID0: 2,
    RaidLevel.RAID1: 2,
    RaidLevel.RAID5: 3,
    RaidLevel.RAID6: 4,
    RaidLevel.RAID10: 4,
}

ZFS_MIN_DEVICES = {
    ZfsLayout.SINGLE: 1,
    ZfsLayout.MIRROR: 2,
    ZfsLayout.RAIDZ1: 3,
    ZfsLayout.RAIDZ2: 4,
    ZfsLayout.RAIDZ3: 5,
}


def validate_name(name: str, kind: str = "array"):
    if not isinstance(name, str) or not NAME_RE.match(name):
        raise StorageValidationError(
            "name",
            f"Invalid {kind} name. Use only letters, numbers, underscores, and hyphens (max 32 chars)",
        )


def validate_device_paths(devices: List[str]):
    if not devices:
        raise StorageValidationError("devices", "At least one device is required")
    for device in devices:
        if not isinstance(device, str) or not DEVICE_PATH_RE.match(device):
            raise StorageValidationError("device_path", f"Invalid device path: {device}")
    duplicates = sorted({d for d in devices if devices.count(d) > 1})
    if duplicates:
        raise StorageValidationError("device_path", f"Device listed more than once: {', '.join(duplicates)}")


def validate_raid_level(level: Union[str, RaidLevel]) -> RaidLevel:
    try:
        return RaidLevel(level)
    except ValueError:
        raise StorageValidationError("level", f"Unsupported RAID level: {level}")


def validate_zfs_layout(layout: Union[str, ZfsLayout]) -> ZfsLayout:
    try:
        return ZfsLayout(layout)
    except ValueError:
        raise StorageValidationError("layout", f"Unsupported ZFS layout: {layout}")


def validate_filesystem(filesystem: Optional[Union[str, Filesystem]]) -> Filesystem:
    if filesystem is None:
        return Filesystem.NONE
    try:
        return Filesystem(filesystem)
    except ValueError:
        raise StorageValidationError("filesystem", f"Unsupported filesystem: {filesystem}")


def validate_raid_device_count(level: RaidLevel, count: int):
    minimum = RAID_MIN_DEVICES[level]
    if count < minimum:
        raise StorageValidationError(
            "device_count", f"{level.value.upper()} requires at least {minimum} devices"
        )
    if level == RaidLevel.RAID10 and count % 2 != 0:
        raise StorageValidationError("device_count", "RAID10 requires an even number of devices")


def validate_zfs_device_count(layout: ZfsLayout, count: int):
    minimum = ZFS_MIN_DEVICES[layout]
    if count < minimum:
        noun = "device" if minimum == 1 else "devices"
        raise StorageValidationError(
            "device_count", f"{layout.value} layout requires at least {minimum} {noun}"
        )


def _mounted_below(disk: Disk) -> bool:
    return any(child.mountpoint or _mounted_below(child) for child in disk.children)


def _member_below(disk: Disk, attr: str) -> bool:
    return any(getattr(child, attr) or _member_below(child, attr) for child in disk.children)


def check_device_state(disks: List[Disk], device: str):
    """Rejects a device that is missing or in any way still in use."""
    disk = find_device(disks, device)
    if disk is None:
        raise StorageValidationError("device_state", f"Device not found: {device}")
    if disk.mountpoint:
        raise StorageValidationError("device_state", f"Device is mounted: {device}")
    if disk.is_system:
        raise StorageValidationError("device_state", f"Device contains system partition: {device}")
    if disk.raid_member or _member_below(disk, "raid_member"):
        raise StorageValidationError("device_state", f"Device is already part of a RAID array: {device}")
    if disk.zfs_member or _member_below(disk, "zfs_member"):
        raise StorageValidationError("device_state", f"Device is already part of a ZFS pool: {device}")
    if _mounted_below(disk):
        raise StorageValidationError("device_state", f"Device has mounted partitions: {device}")


class DeviceLeases:
    """Devices currently held by an in-flight provisioning pipeline."""

    def __init__(self):
        self._held: Set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, devices: Iterable[str]):
        wanted = set(devices)
        with self._lock:
            busy = wanted & self._held
            if busy:
                raise DeviceBusyError(busy)
            self._held |= wanted
        logger.debug("Leased devices: %s", ", ".join(sorted(wanted)))

    def release(self, devices: Iterable[str]):
        with self._lock:
            self._held -= set(devices)

    def held(self) -> Set[str]:
        with self._lock:
            return set(self._held)


class Validator:
    def __init__(self, runner: CommandRunner, leases: DeviceLeases):
        self.runner = runner
        self.leases = leases

    def require_tool(self, tool: str, message: str):
        if not self.runner.which(tool):
            raise StorageValidationError("tool_missing", message)

    async def check_live_state(self, devices: List[str]):
        """
        Re-reads the device tree instead of trusting an earlier discovery,
        since disks can be mounted or assembled in between.
        """
        try:
            disks = build_disk_tree(await list_block_devices(self.runner))
        except (ValueError, TypeError) as e:
            logger.error("Device validation could not list block devices: %s", e)
            raise StorageValidationError("device_state", "Failed to validate devices")

        raid_members, zfs_members = await read_member_sets(
            self.runner, zfs_available=bool(self.runner.which(ZFS_TOOL))
        )
        resolve_membership(disks, raid_members, zfs_members)
        for device in devices:
            check_device_state(disks, device)

    async def validate_raid(
        self,
        name: str,
        level: Union[str, RaidLevel],
        devices: List[str],
        filesystem: Optional[Union[str, Filesystem]] = None,
    ) -> RaidRequest:
        self.require_tool(RAID_TOOL, "mdadm is not installed. Install with: apt install mdadm")
        validate_name(name, "array")
        raid_level = validate_raid_level(level)
        fs = validate_filesystem(filesystem)
        validate_device_paths(devices)
        validate_raid_device_count(raid_level, len(devices))
        await self.check_live_state(devices)
        self.leases.acquire(devices)
        return RaidRequest(name=name, level=raid_level, devices=list(devices), filesystem=fs)

    async def validate_zfs(
        self,
        name: str,
        layout: Union[str, ZfsLayout],
        devices: List[str],
    ) -> ZfsRequest:
        self.require_tool(ZFS_TOOL, "ZFS is not installed. Install with: apt install zfsutils-linux")
        validate_name(name, "pool")
        zfs_layout = validate_zfs_layout(layout)
        validate_device_paths(devices)
        validate_zfs_device_count(zfs_layout, len(devices))
        await self.check_live_state(devices)
        self.leases.acquire(devices)
        return ZfsRequest(name=name, layout=zfs_layout, devices=list(devices))
