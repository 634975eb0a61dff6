from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

class TaskType(str, Enum):
    RAID = "raid"
    ZFS = "zfs"

class TaskAction(str, Enum):
    CREATE = "create"
    SYNC = "sync"
    SCRUB = "scrub"

class StorageTask(BaseModel):
    id: str = ""
    type: TaskType
    action: TaskAction = TaskAction.CREATE
    status: TaskStatus = TaskStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    target: Optional[str] = None  # array or pool name
    devices: List[str] = []
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    warnings: List[str] = []
