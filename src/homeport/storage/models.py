from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel


class DeviceClass(str, Enum):
    DISK = "disk"
    PARTITION = "partition"
    LOGICAL_VOLUME = "logical-volume"
    RAID_MEMBER = "raid-member"


class RaidLevel(str, Enum):
    RAID0 = "raid0"
    RAID1 = "raid1"
    RAID5 = "raid5"
    RAID6 = "raid6"
    RAID10 = "raid10"

    @property
    def md_level(self) -> str:
        """Level argument as mdadm expects it (``raid5`` -> ``5``)."""
        return self.value.replace("raid", "", 1)


class ZfsLayout(str, Enum):
    SINGLE = "single"
    MIRROR = "mirror"
    RAIDZ1 = "raidz1"
    RAIDZ2 = "raidz2"
    RAIDZ3 = "raidz3"


class Filesystem(str, Enum):
    EXT4 = "ext4"
    XFS = "xfs"
    NONE = "none"


class Disk(BaseModel):
    name: str
    path: str
    size: int  # bytes
    size_human: str
    model: Optional[str] = None
    serial: Optional[str] = None
    device_class: DeviceClass
    fstype: Optional[str] = None
    mountpoint: Optional[str] = None
    is_system: bool = False  # True if root, boot or swap
    available: bool = False  # True if safe to use for a new array or pool
    raid_member: Optional[str] = None  # "mdadm" when part of an md array
    zfs_member: Optional[str] = None  # "zfs" when part of a pool
    children: List["Disk"] = []


Disk.model_rebuild()


class RaidArray(BaseModel):
    name: str
    path: str
    level: str  # as reported by the kernel, e.g. raid1
    state: str
    devices: List[str] = []
    size: str = ""
    sync_progress: Optional[float] = None
    sync_action: Optional[Literal["resync", "recovery", "reshape"]] = None


class ZfsPool(BaseModel):
    name: str
    health: str
    size: str = ""
    allocated: str = ""
    free: str = ""
    devices: List[str] = []
    layout: Literal["single", "mirror", "raidz1", "raidz2", "raidz3", "unknown"] = "unknown"


class StorageDiscovery(BaseModel):
    disks: List[Disk] = []
    raid_arrays: List[RaidArray] = []
    zfs_pools: List[ZfsPool] = []
    zfs_tool_available: bool = False
    raid_tool_available: bool = False


class RaidSyncProgress(BaseModel):
    array: str
    progress: float
    action: str


class ZfsScanProgress(BaseModel):
    pool: str
    progress: float
    action: str


class CreateResult(BaseModel):
    accepted: bool
    task_id: Optional[str] = None
    error: Optional[str] = None


class RaidRequest(BaseModel):
    name: str
    level: RaidLevel
    devices: List[str]
    filesystem: Filesystem = Filesystem.NONE


class ZfsRequest(BaseModel):
    name: str
    layout: ZfsLayout
    devices: List[str]
