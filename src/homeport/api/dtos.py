from typing import List, Optional

from pydantic import BaseModel

from homeport.jobs.models import StorageTask
from homeport.storage.models import (
    Filesystem,
    RaidLevel,
    RaidSyncProgress,
    StorageDiscovery,
    ZfsLayout,
    ZfsScanProgress,
)


class BaseResponse(BaseModel):
    status: str = "success"
    message: Optional[str] = None


class SuccessResponse(BaseResponse):
    pass


class ErrorResponse(BaseResponse):
    status: str = "error"


class VersionInfo(BaseModel):
    version: str


class VersionResponse(BaseResponse):
    data: VersionInfo


class JobInfo(BaseModel):
    task_id: str


class StorageDiscoveryResponse(BaseResponse):
    data: StorageDiscovery


class TaskResponse(BaseResponse):
    data: StorageTask


class TaskListResponse(BaseResponse):
    data: List[StorageTask] = []


class TaskAcceptedResponse(BaseResponse):
    data: JobInfo


class RaidProgressResponse(BaseResponse):
    data: List[RaidSyncProgress] = []


class ZfsProgressResponse(BaseResponse):
    data: List[ZfsScanProgress] = []


class RaidCreateRequest(BaseModel):
    name: str
    level: RaidLevel
    devices: List[str]
    filesystem: Filesystem = Filesystem.NONE


class ZfsPoolCreateRequest(BaseModel):
    name: str
    layout: ZfsLayout
    devices: List[str]
