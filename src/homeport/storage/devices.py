import logging
from typing import Any, Dict, List

from homeport.config.settings import config
from homeport.storage.commands import CommandRunner
from homeport.storage.models import DeviceClass, Disk
from homeport.storage.parsers import format_bytes, parse_lsblk

logger = logging.getLogger(__name__)

LSBLK_COMMAND = [
    "lsblk", "-J", "-b",
    "-o", "NAME,PATH,SIZE,MODEL,SERIAL,FSTYPE,MOUNTPOINT,TYPE,PKNAME",
]

# Loop devices, ram disks and compressed swap are never storage candidates
VIRTUAL_PREFIXES = ("loop", "ram", "zram")


def _device_class(lsblk_type: str) -> DeviceClass:
    if lsblk_type == "disk":
        return DeviceClass.DISK
    if lsblk_type == "part":
        return DeviceClass.PARTITION
    if lsblk_type and lsblk_type.startswith("raid"):
        return DeviceClass.RAID_MEMBER
    return DeviceClass.LOGICAL_VOLUME


def _to_disk(device: Dict[str, Any]) -> Disk:
    name = device.get("name") or ""
    size = int(device.get("size") or 0)
    return Disk(
        name=name,
        path=device.get("path") or f"/dev/{name}",
        size=size,
        size_human=format_bytes(size),
        model=(device.get("model") or "").strip() or None,
        serial=(device.get("serial") or "").strip() or None,
        device_class=_device_class(device.get("type") or ""),
        fstype=device.get("fstype") or None,
        mountpoint=device.get("mountpoint") or None,
        children=[_to_disk(child) for child in device.get("children") or []],
    )


def build_disk_tree(raw_devices: List[Dict[str, Any]]) -> List[Disk]:
    """
    Turns lsblk block devices into Disk models.
    Only top-level physical disks are kept; partitions and anything stacked on
    them are nested under their parent in lsblk order.
    """
    disks = []
    for device in raw_devices:
        name = device.get("name") or ""
        if device.get("type") != "disk" or name.startswith(VIRTUAL_PREFIXES):
            continue
        disks.append(_to_disk(device))
    return disks


async def list_block_devices(runner: CommandRunner) -> List[Dict[str, Any]]:
    """Raw lsblk tree. Raises ValueError when lsblk fails or prints garbage."""
    result = await runner.run(LSBLK_COMMAND, timeout=config.probe_timeout)
    if not result.success:
        raise ValueError(result.error_text("lsblk failed"))
    return parse_lsblk(result.stdout)


async def probe_disks(runner: CommandRunner) -> List[Disk]:
    """
    Current disk tree of the host.
    An empty list means the tree could not be read, not that there are no disks.
    """
    try:
        return build_disk_tree(await list_block_devices(runner))
    except (ValueError, TypeError) as e:
        logger.warning("Device discovery failed: %s", e)
        return []
