from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from homeport.api.routers.storage import router
from homeport.jobs.manager import TaskLedger
from homeport.jobs.models import StorageTask, TaskStatus, TaskType
from homeport.storage.manager import StorageManager
from homeport.storage.models import CreateResult, RaidSyncProgress, ZfsScanProgress

from conftest import FakeRunner, MDSTAT, host_responses


def _client():
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


@pytest.fixture
def real_manager():
    from homeport.config.settings import config

    runner = FakeRunner(responses=host_responses(), files={config.mdstat_path: MDSTAT})
    manager = StorageManager(ledger=TaskLedger(), runner=runner)
    with patch("homeport.api.routers.storage.manager", manager):
        yield manager


@pytest.fixture
def mock_manager():
    manager = MagicMock()
    manager.create_raid = AsyncMock()
    manager.create_zfs_pool = AsyncMock()
    manager.discover = AsyncMock()
    manager.get_raid_progress = AsyncMock(return_value=[])
    manager.get_zfs_progress = AsyncMock(return_value=[])
    with patch("homeport.api.routers.storage.manager", manager):
        yield manager


def test_router_registered():
    from homeport.api.server import app

    paths = {route.path for route in app.routes}
    assert "/storage/discovery" in paths
    assert "/storage/raid/create" in paths
    assert "/info/version" in paths


def test_discovery(real_manager):
    response = _client().get("/storage/discovery")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    disks = {d["name"]: d for d in body["data"]["disks"]}
    assert disks["sdb"]["available"] is True
    assert disks["sda"]["is_system"] is True
    assert body["data"]["raid_arrays"][0]["name"] == "md0"
    assert body["data"]["zfs_pools"][0]["name"] == "tank"


def test_discovery_error(mock_manager):
    mock_manager.discover.side_effect = RuntimeError("lsblk exploded")

    response = _client().get("/storage/discovery")

    assert response.status_code == 500
    assert response.json()["detail"] == "lsblk exploded"


def test_create_raid_accepted(mock_manager):
    mock_manager.create_raid.return_value = CreateResult(accepted=True, task_id="task_1_abcdef012")

    payload = {"name": "data1", "level": "raid1", "devices": ["/dev/sdb", "/dev/sdc"], "filesystem": "ext4"}
    response = _client().post("/storage/raid/create", json=payload)

    assert response.status_code == 202
    assert response.json()["data"]["task_id"] == "task_1_abcdef012"
    args = mock_manager.create_raid.call_args.args
    assert args[0] == "data1"
    assert args[1].value == "raid1"
    assert args[2] == ["/dev/sdb", "/dev/sdc"]
    assert args[3].value == "ext4"


def test_create_raid_rejected(mock_manager):
    mock_manager.create_raid.return_value = CreateResult(
        accepted=False, error="RAID1 requires at least 2 devices"
    )

    payload = {"name": "data1", "level": "raid1", "devices": ["/dev/sdb"]}
    response = _client().post("/storage/raid/create", json=payload)

    assert response.status_code == 400
    assert response.json()["detail"] == "RAID1 requires at least 2 devices"


def test_create_raid_unknown_level(mock_manager):
    payload = {"name": "data1", "level": "raid7", "devices": ["/dev/sdb", "/dev/sdc"]}
    response = _client().post("/storage/raid/create", json=payload)

    assert response.status_code == 422
    mock_manager.create_raid.assert_not_called()


def test_create_zfs_accepted(mock_manager):
    mock_manager.create_zfs_pool.return_value = CreateResult(accepted=True, task_id="task_2_abcdef012")

    payload = {"name": "tank", "layout": "mirror", "devices": ["/dev/sdb", "/dev/sdc"]}
    response = _client().post("/storage/zfs/create", json=payload)

    assert response.status_code == 202
    assert response.json()["message"] == "ZFS pool creation started"


def test_create_zfs_not_installed(mock_manager):
    mock_manager.create_zfs_pool.return_value = CreateResult(
        accepted=False, error="ZFS is not installed. Install with: apt install zfsutils-linux"
    )

    payload = {"name": "tank", "layout": "mirror", "devices": ["/dev/sdb", "/dev/sdc"]}
    response = _client().post("/storage/zfs/create", json=payload)

    assert response.status_code == 400
    assert "zfsutils-linux" in response.json()["detail"]


def test_create_zfs_unexpected_error(mock_manager):
    mock_manager.create_zfs_pool.side_effect = RuntimeError("boom")

    payload = {"name": "tank", "layout": "single", "devices": ["/dev/sdb"]}
    response = _client().post("/storage/zfs/create", json=payload)

    assert response.status_code == 500


def test_tasks(real_manager):
    task_id = real_manager.ledger.register(StorageTask(type=TaskType.RAID, target="data1"))
    client = _client()

    listed = client.get("/storage/tasks")
    assert listed.status_code == 200
    assert [t["id"] for t in listed.json()["data"]] == [task_id]

    single = client.get(f"/storage/tasks/{task_id}")
    assert single.status_code == 200
    assert single.json()["data"]["status"] == "pending"

    assert client.get("/storage/tasks/task_0_missing").status_code == 404


def test_cancel_unknown_task(real_manager):
    response = _client().post("/storage/tasks/task_0_missing/cancel")

    assert response.status_code == 404


def test_cancel_task(mock_manager):
    mock_manager.cancel_task.return_value = True

    response = _client().post("/storage/tasks/task_1_abcdef012/cancel")

    assert response.status_code == 200
    mock_manager.cancel_task.assert_called_once_with("task_1_abcdef012")


def test_progress_endpoints(mock_manager):
    mock_manager.get_raid_progress.return_value = [
        RaidSyncProgress(array="md0", progress=27.5, action="resync")
    ]
    mock_manager.get_zfs_progress.return_value = [
        ZfsScanProgress(pool="tank", progress=13.33, action="scrub")
    ]
    client = _client()

    raid = client.get("/storage/raid/progress").json()["data"]
    zfs = client.get("/storage/zfs/progress").json()["data"]

    assert raid == [{"array": "md0", "progress": 27.5, "action": "resync"}]
    assert zfs == [{"pool": "tank", "progress": 13.33, "action": "scrub"}]


def test_task_websocket_streams_final_state(real_manager):
    task_id = real_manager.ledger.register(StorageTask(type=TaskType.ZFS, target="tank"))
    real_manager.ledger.update(
        task_id, status=TaskStatus.COMPLETED, progress=100, completed_at=datetime.now()
    )

    with _client().websocket_connect(f"/storage/tasks/{task_id}/ws") as ws:
        message = ws.receive_json()

    assert message["type"] == "task"
    assert message["data"]["id"] == task_id
    assert message["data"]["status"] == "completed"


def test_task_websocket_unknown_task(real_manager):
    with _client().websocket_connect("/storage/tasks/task_0_missing/ws") as ws:
        message = ws.receive_json()

    assert message == {"type": "error", "message": "Task task_0_missing not found"}
