"""Progress of background work started outside homeport (resyncs, scrubs)."""

from typing import List

from homeport.config.settings import config
from homeport.storage.commands import CommandRunner
from homeport.storage.models import RaidSyncProgress, ZfsScanProgress
from homeport.storage.parsers import parse_mdstat_progress, parse_zpool_list, parse_zpool_scan
from homeport.storage.validation import ZFS_TOOL


async def get_raid_progress(runner: CommandRunner) -> List[RaidSyncProgress]:
    return parse_mdstat_progress(runner.read_text(config.mdstat_path))


async def list_pool_names(runner: CommandRunner) -> List[str]:
    result = await runner.run(["zpool", "list", "-H", "-o", "name"], timeout=config.probe_timeout)
    if not result.success:
        return []
    return [row["name"] for row in parse_zpool_list(result.stdout)]


async def get_zfs_progress(runner: CommandRunner) -> List[ZfsScanProgress]:
    if not runner.which(ZFS_TOOL):
        return []

    results = []
    for pool in await list_pool_names(runner):
        status = await runner.run(["zpool", "status", pool], timeout=config.probe_timeout)
        if not status.success:
            continue
        scan = parse_zpool_scan(status.stdout)
        if scan:
            action, progress = scan
            results.append(ZfsScanProgress(pool=pool, progress=progress, action=action))
    return results
