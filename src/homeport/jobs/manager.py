import asyncio
import logging
import threading
import time
import uuid
from typing import AsyncIterator, Callable, Dict, List, Optional

from homeport.config.settings import config
from homeport.jobs.models import StorageTask

logger = logging.getLogger(__name__)

TaskCallback = Callable[[StorageTask], None]


class TaskLedger:
    """
    In-memory registry of storage tasks.

    Every read hands out a copy, every write goes through ``update`` under the
    ledger lock, and subscribers are notified in update order while the lock is
    held. Finished tasks beyond ``max_finished`` are evicted oldest first;
    pending and running tasks are never evicted.
    """

    def __init__(self, max_finished: Optional[int] = None):
        self.max_finished = max_finished if max_finished is not None else config.max_finished_tasks
        self._tasks: Dict[str, StorageTask] = {}
        self._subscribers: Dict[str, List[TaskCallback]] = {}
        self._lock = threading.RLock()

    @staticmethod
    def new_task_id() -> str:
        return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def register(self, task: StorageTask) -> str:
        with self._lock:
            task_id = task.id or self.new_task_id()
            while task_id in self._tasks:
                task_id = self.new_task_id()
            self._tasks[task_id] = task.model_copy(update={"id": task_id}, deep=True)
            self._subscribers.setdefault(task_id, [])
            self._evict_finished()

        logger.info("Registered %s %s task %s", task.type.value, task.action.value, task_id)
        return task_id

    def update(self, task_id: str, **fields) -> Optional[StorageTask]:
        rejected = sorted((set(fields) - set(StorageTask.model_fields)) | ({"id"} & set(fields)))
        if rejected:
            raise ValueError(f"Cannot update task fields: {', '.join(rejected)}")

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            if task.status.terminal:
                logger.warning("Ignoring update to finished task %s", task_id)
                return task.model_copy(deep=True)

            if fields.get("progress") is not None:
                fields["progress"] = max(task.progress, int(fields["progress"]))

            updated = StorageTask.model_validate({**task.model_dump(), **fields})
            self._tasks[task_id] = updated
            for callback in list(self._subscribers.get(task_id, [])):
                self._notify(callback, updated)
            return updated.model_copy(deep=True)

    def subscribe(self, task_id: str, callback: TaskCallback) -> Callable[[], None]:
        """
        Calls ``callback`` with a snapshot on every update of ``task_id``, and
        right away if the task already exists. Returns the unsubscribe function.
        """
        with self._lock:
            self._subscribers.setdefault(task_id, []).append(callback)
            task = self._tasks.get(task_id)
            if task is not None:
                self._notify(callback, task)

        def unsubscribe():
            with self._lock:
                listeners = self._subscribers.get(task_id, [])
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    async def watch(self, task_id: str) -> AsyncIterator[StorageTask]:
        """Yields task snapshots until the task finishes."""
        if self.get(task_id) is None:
            raise ValueError(f"Task {task_id} not found")

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self.subscribe(
            task_id, lambda snapshot: loop.call_soon_threadsafe(queue.put_nowait, snapshot)
        )
        try:
            while True:
                snapshot = await queue.get()
                yield snapshot
                if snapshot.status.terminal:
                    break
        finally:
            unsubscribe()

    def get(self, task_id: str) -> Optional[StorageTask]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    def list_all(self) -> List[StorageTask]:
        with self._lock:
            tasks = sorted(self._tasks.values(), key=lambda t: t.started_at)
            return [t.model_copy(deep=True) for t in tasks]

    def _notify(self, callback: TaskCallback, task: StorageTask):
        try:
            callback(task.model_copy(deep=True))
        except Exception:
            logger.exception("Task subscriber for %s raised", task.id)

    def _evict_finished(self):
        finished = sorted(
            (t for t in self._tasks.values() if t.status.terminal),
            key=lambda t: t.started_at,
        )
        excess = len(finished) - self.max_finished
        for task in finished[:max(excess, 0)]:
            del self._tasks[task.id]
            self._subscribers.pop(task.id, None)
            logger.debug("Evicted finished task %s", task.id)
