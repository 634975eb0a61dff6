"""API router for storage discovery and provisioning."""

import traceback

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.logger import logger

from homeport.api.dtos import (
    ErrorResponse,
    JobInfo,
    RaidCreateRequest,
    RaidProgressResponse,
    StorageDiscoveryResponse,
    SuccessResponse,
    TaskAcceptedResponse,
    TaskListResponse,
    TaskResponse,
    ZfsPoolCreateRequest,
    ZfsProgressResponse,
)
from homeport.storage.manager import StorageManager

router = APIRouter(prefix="/storage", tags=["Storage"])
manager = StorageManager()


@router.get(
    "/discovery",
    response_model=StorageDiscoveryResponse,
    responses={500: {"model": ErrorResponse, "description": "Internal Server Error"}}
)
async def discover():
    """
    Lists disks with availability, existing RAID arrays and ZFS pools.
    """
    try:
        return StorageDiscoveryResponse(data=await manager.discover())
    except Exception as e:
        logger.error(f"Error discovering storage: {e}\n{traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks():
    """
    Lists tracked storage tasks, oldest first.
    """
    return TaskListResponse(data=manager.list_tasks())


@router.get(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    responses={404: {"model": ErrorResponse, "description": "Task not found"}}
)
def get_task(task_id: str):
    task = manager.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskResponse(data=task)


@router.post(
    "/tasks/{task_id}/cancel",
    response_model=SuccessResponse,
    responses={404: {"model": ErrorResponse, "description": "Task not found, finished or on its last step"}}
)
def cancel_task(task_id: str):
    """
    Stops a task before its next step. A command already running is not
    interrupted, and a task that has started its last step can no longer be cancelled.
    """
    if not manager.cancel_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found, finished or on its last step")
    return SuccessResponse(message=f"Cancellation requested for {task_id}")


@router.post(
    "/raid/create",
    response_model=TaskAcceptedResponse,
    status_code=202,
    responses={
        400: {"model": ErrorResponse, "description": "Validation failed"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"}
    }
)
async def create_raid(request: RaidCreateRequest):
    """
    Validates the request and starts building an mdadm array in the background.
    """
    try:
        result = await manager.create_raid(
            request.name, request.level, request.devices, request.filesystem
        )
    except Exception as e:
        logger.error(f"Error creating RAID array: {e}\n{traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=str(e))

    if not result.accepted:
        raise HTTPException(status_code=400, detail=result.error)
    return TaskAcceptedResponse(
        message="RAID creation started",
        data=JobInfo(task_id=result.task_id),
    )


@router.post(
    "/zfs/create",
    response_model=TaskAcceptedResponse,
    status_code=202,
    responses={
        400: {"model": ErrorResponse, "description": "Validation failed"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"}
    }
)
async def create_zfs_pool(request: ZfsPoolCreateRequest):
    """
    Validates the request and starts creating a ZFS pool in the background.
    """
    try:
        result = await manager.create_zfs_pool(request.name, request.layout, request.devices)
    except Exception as e:
        logger.error(f"Error creating ZFS pool: {e}\n{traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=str(e))

    if not result.accepted:
        raise HTTPException(status_code=400, detail=result.error)
    return TaskAcceptedResponse(
        message="ZFS pool creation started",
        data=JobInfo(task_id=result.task_id),
    )


@router.get("/raid/progress", response_model=RaidProgressResponse)
async def raid_progress():
    """
    Resync, recovery and reshape progress of md arrays.
    """
    return RaidProgressResponse(data=await manager.get_raid_progress())


@router.get("/zfs/progress", response_model=ZfsProgressResponse)
async def zfs_progress():
    """
    Scrub and resilver progress of ZFS pools.
    """
    return ZfsProgressResponse(data=await manager.get_zfs_progress())


@router.websocket("/tasks/{task_id}/ws")
async def watch_task(websocket: WebSocket, task_id: str):
    """
    Streams task snapshots until the task completes or fails.
    """
    await websocket.accept()
    if manager.get_task(task_id) is None:
        await websocket.send_json({"type": "error", "message": f"Task {task_id} not found"})
        await websocket.close()
        return

    try:
        async for snapshot in manager.ledger.watch(task_id):
            await websocket.send_json({"type": "task", "data": jsonable_encoder(snapshot)})
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"Task watcher for {task_id} disconnected")
