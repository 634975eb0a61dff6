import asyncio
import json

import click

from homeport.storage.models import Filesystem, RaidLevel, ZfsLayout


def _echo_json(data):
    click.echo(json.dumps(data, indent=4, default=str))


async def provision(manager, create):
    """
    Awaits a create call, then follows the task until it finishes.
    Raises ClickException when the request is rejected or the task fails.
    """
    from homeport.jobs.models import TaskStatus

    result = await create
    if not result.accepted:
        raise click.ClickException(result.error)

    last = None
    async for snapshot in manager.ledger.watch(result.task_id):
        line = f"[{snapshot.progress:3d}%] {snapshot.message}"
        if line != last:
            click.echo(line)
            last = line

    task = manager.get_task(result.task_id)
    for warning in task.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if task.status == TaskStatus.FAILED:
        raise click.ClickException(task.error or "Storage task failed")
    return task


@click.group()
def storage():
    """Discover disks and build RAID arrays or ZFS pools."""
    pass


@storage.command()
def discover():
    """Show disks, arrays and pools with availability."""
    from homeport.storage.manager import StorageManager
    manager = StorageManager()
    discovery = asyncio.run(manager.discover())
    _echo_json(discovery.model_dump(mode="json"))


@storage.command()
def progress():
    """Show running resyncs, scrubs and resilvers."""
    from homeport.storage.manager import StorageManager
    manager = StorageManager()

    async def collect():
        return await manager.get_raid_progress(), await manager.get_zfs_progress()

    raid, zfs = asyncio.run(collect())
    _echo_json({
        "raid": [p.model_dump() for p in raid],
        "zfs": [p.model_dump() for p in zfs],
    })


@storage.command("create-raid")
@click.argument("name")
@click.option("--level", "-l", required=True, type=click.Choice([l.value for l in RaidLevel]), help="RAID level.")
@click.option("--device", "-d", "devices", required=True, multiple=True, help="Member device, repeat for each disk.")
@click.option("--filesystem", "-f", default=Filesystem.NONE.value, type=click.Choice([f.value for f in Filesystem]), help="Filesystem to create on the array.")
@click.confirmation_option(prompt="All data on the selected devices will be destroyed. Continue?")
def create_raid(name, level, devices, filesystem):
    """Create an mdadm RAID array."""
    from homeport.storage.manager import StorageManager
    manager = StorageManager()
    asyncio.run(provision(manager, manager.create_raid(name, level, list(devices), filesystem)))


@storage.command("create-pool")
@click.argument("name")
@click.option("--layout", "-l", required=True, type=click.Choice([l.value for l in ZfsLayout]), help="Pool layout.")
@click.option("--device", "-d", "devices", required=True, multiple=True, help="Pool device, repeat for each disk.")
@click.confirmation_option(prompt="All data on the selected devices will be destroyed. Continue?")
def create_pool(name, layout, devices):
    """Create a ZFS pool."""
    from homeport.storage.manager import StorageManager
    manager = StorageManager()
    asyncio.run(provision(manager, manager.create_zfs_pool(name, layout, list(devices))))


async def apply_storage_configuration(manager, storage_config):
    """
    Provisions every array and pool listed in a ``storage`` config section,
    one after the other. Returns the finished tasks.
    """
    tasks = []
    for entry in storage_config.get("raid") or []:
        tasks.append(await provision(manager, manager.create_raid(
            entry.get("name"),
            entry.get("level"),
            list(entry.get("devices") or []),
            entry.get("filesystem"),
        )))
    for entry in storage_config.get("zfs") or []:
        tasks.append(await provision(manager, manager.create_zfs_pool(
            entry.get("name"),
            entry.get("layout"),
            list(entry.get("devices") or []),
        )))
    return tasks
