import logging
import os
from typing import Iterable, List, Optional, Set, Tuple

from homeport.config.settings import config
from homeport.storage.models import DeviceClass, Disk
from homeport.storage.parsers import mdstat_members, parse_zpool_devices

logger = logging.getLogger(__name__)

SYSTEM_MOUNTPOINTS = ("/", "[SWAP]")


def raid_member_names(mdstat_text: str) -> Set[str]:
    return mdstat_members(mdstat_text)


def zfs_member_names(zpool_status_text: str) -> Set[str]:
    """
    Basenames of the devices ZFS reports, with /dev/disk/by-* links resolved
    to the kernel name lsblk uses.
    """
    return {
        os.path.basename(os.path.realpath(path))
        for path in parse_zpool_devices(zpool_status_text)
    }


def is_system_mount(mountpoint: Optional[str], fstype: Optional[str] = None) -> bool:
    if fstype == "swap":
        return True
    if not mountpoint:
        return False
    return mountpoint in SYSTEM_MOUNTPOINTS or mountpoint == "/boot" or mountpoint.startswith("/boot/")


def _in_use(disk: Disk) -> bool:
    return bool(
        disk.mountpoint
        or disk.raid_member
        or disk.zfs_member
        or disk.is_system
        or any(_in_use(child) for child in disk.children)
    )


def _resolve(disk: Disk, raid_members: Set[str], zfs_members: Set[str]):
    for child in disk.children:
        _resolve(child, raid_members, zfs_members)

    disk.raid_member = "mdadm" if disk.name in raid_members else None
    disk.zfs_member = "zfs" if disk.name in zfs_members else None
    disk.is_system = is_system_mount(disk.mountpoint, disk.fstype) or any(
        child.is_system for child in disk.children
    )
    disk.available = disk.device_class == DeviceClass.DISK and not _in_use(disk)


def resolve_membership(
    disks: Iterable[Disk], raid_members: Set[str], zfs_members: Set[str]
) -> List[Disk]:
    """
    Tags RAID/ZFS membership and recomputes availability for a freshly probed
    tree. A disk is only available when neither it nor any device below it is
    mounted, a member of an array or pool, or a system partition.
    """
    resolved = list(disks)
    for disk in resolved:
        _resolve(disk, raid_members, zfs_members)
    return resolved


def find_device(disks: Iterable[Disk], path: str) -> Optional[Disk]:
    for disk in disks:
        if disk.path == path:
            return disk
        found = find_device(disk.children, path)
        if found:
            return found
    return None


async def read_member_sets(runner, zfs_available: bool) -> Tuple[Set[str], Set[str]]:
    """Live RAID and ZFS member names from /proc/mdstat and ``zpool status -P``."""
    raid_members = raid_member_names(runner.read_text(config.mdstat_path))
    zfs_members: Set[str] = set()
    if zfs_available:
        result = await runner.run(["zpool", "status", "-P"], timeout=config.probe_timeout)
        if result.success:
            zfs_members = zfs_member_names(result.stdout)
        else:
            logger.warning("zpool status failed: %s", result.error_text("no output"))
    return raid_members, zfs_members
