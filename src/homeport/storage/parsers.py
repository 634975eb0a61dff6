"""
Parsers for the text and JSON output of lsblk, /proc/mdstat, mdadm and zpool.

Everything in here is pure: it takes captured output and returns plain data,
so format drift in a tool only breaks this module and its tests.
"""

import json
import re
from typing import Any, Dict, List, Optional, Set, Tuple

from homeport.storage.models import RaidArray, RaidSyncProgress

MD_HEADER_RE = re.compile(r"^(md[\w/]+)\s*:\s*(active|inactive)\b(.*)$")
MD_MEMBER_RE = re.compile(r"^([^\[\s(]+)\[\d+\](?:\([A-Za-z]\))*$")
MD_PERSONALITY_RE = re.compile(r"^(raid\d+|linear|multipath|faulty)$")
MD_BLOCKS_RE = re.compile(r"^\s+(\d+)\s+blocks\b")
MD_SYNC_RE = re.compile(r"(recovery|resync|reshape)\s*=\s*([\d.]+)%")

DETAIL_SIZE_RE = re.compile(r"^\s*Array Size\s*:\s*(\d+)", re.MULTILINE)
DETAIL_STATE_RE = re.compile(r"^\s*State\s*:\s*(.+?)\s*$", re.MULTILINE)

ZPOOL_DEVICE_RE = re.compile(r"/dev/\S+")
ZPOOL_VDEV_RE = re.compile(r"^(mirror|raidz[123]?)-\d+$")
ZPOOL_SCAN_RE = re.compile(
    r"scan:\s+(scrub|resilver)\s+in\s+progress.*?([\d.]+)%\s+done", re.DOTALL
)

SIZE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 B"
    exponent = 0
    value = float(size)
    while value >= 1024 and exponent < len(SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[exponent]}"


def parse_lsblk(output: str) -> List[Dict[str, Any]]:
    """
    Returns the ``blockdevices`` list of ``lsblk -J`` output.
    Raises ValueError on anything that is not lsblk JSON.
    """
    data = json.loads(output)
    if not isinstance(data, dict) or not isinstance(data.get("blockdevices"), list):
        raise ValueError("lsblk output has no blockdevices list")
    return data["blockdevices"]


def _md_header(line: str) -> Optional[Tuple[str, str, Optional[str], List[str]]]:
    match = MD_HEADER_RE.match(line)
    if not match:
        return None
    name, state, rest = match.groups()
    level = None
    members = []
    for token in rest.split():
        if token.startswith("("):
            # (auto-read-only), (read-only)
            continue
        if level is None and state == "active" and MD_PERSONALITY_RE.match(token):
            level = token
            continue
        member = MD_MEMBER_RE.match(token)
        if member:
            members.append(member.group(1))
    return name, state, level, members


def mdstat_members(text: str) -> Set[str]:
    """Basenames of every device that belongs to an md array."""
    members = set()
    for line in text.splitlines():
        header = _md_header(line)
        if header:
            members.update(header[3])
    return members


def parse_mdstat(text: str) -> List[RaidArray]:
    arrays: List[RaidArray] = []
    current: Optional[RaidArray] = None

    for line in text.splitlines():
        header = _md_header(line)
        if header:
            name, state, level, members = header
            current = RaidArray(
                name=name,
                path=f"/dev/{name}",
                level=level or "unknown",
                state=state,
                devices=[f"/dev/{m}" for m in members],
            )
            arrays.append(current)
            continue

        if current is None:
            continue

        blocks = MD_BLOCKS_RE.match(line)
        if blocks and not current.size:
            current.size = format_bytes(int(blocks.group(1)) * 1024)

        sync = MD_SYNC_RE.search(line)
        if sync:
            current.sync_action = sync.group(1)
            current.sync_progress = float(sync.group(2))

    return arrays


def parse_mdstat_progress(text: str) -> List[RaidSyncProgress]:
    results = []
    current = None
    for line in text.splitlines():
        header = MD_HEADER_RE.match(line)
        if header:
            current = header.group(1)
            continue
        sync = MD_SYNC_RE.search(line)
        if sync and current:
            results.append(RaidSyncProgress(
                array=current,
                progress=float(sync.group(2)),
                action=sync.group(1),
            ))
    return results


def parse_mdadm_detail(text: str) -> Dict[str, Any]:
    """Pulls size in bytes and the state string out of ``mdadm --detail``."""
    detail: Dict[str, Any] = {}
    size = DETAIL_SIZE_RE.search(text)
    if size:
        # mdadm reports KiB
        detail["size"] = int(size.group(1)) * 1024
    state = DETAIL_STATE_RE.search(text)
    if state:
        detail["state"] = state.group(1)
    return detail


def parse_zpool_list(text: str) -> List[Dict[str, str]]:
    """Parses ``zpool list -H -o name,size,alloc,free,health``."""
    keys = ["name", "size", "allocated", "free", "health"]
    pools = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        row = dict(zip(keys, fields + [""] * (len(keys) - len(fields))))
        if row["name"]:
            pools.append(row)
    return pools


def _config_lines(text: str) -> List[str]:
    lines = []
    in_config = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("config:"):
            in_config = True
            continue
        if stripped.startswith("errors:") or stripped.startswith("pool:"):
            in_config = False
            continue
        if in_config and stripped:
            lines.append(stripped)
    return lines


def parse_zpool_devices(text: str) -> List[str]:
    """Device paths in the config section(s) of ``zpool status -P``."""
    devices = []
    for line in _config_lines(text):
        devices.extend(ZPOOL_DEVICE_RE.findall(line.split()[0]))
    return devices


def detect_zpool_layout(text: str) -> str:
    """Layout of the first data vdev in ``zpool status`` output."""
    devices = 0
    for line in _config_lines(text):
        token = line.split()[0]
        if token in ("logs", "cache", "spares", "special", "dedup"):
            break
        vdev = ZPOOL_VDEV_RE.match(token)
        if vdev:
            kind = vdev.group(1)
            return "raidz1" if kind == "raidz" else kind
        if token.startswith("/dev/"):
            devices += 1
    if devices:
        return "single"
    return "unknown"


def parse_zpool_scan(text: str) -> Optional[Tuple[str, float]]:
    """Returns (action, percent) for a scrub or resilver still running."""
    match = ZPOOL_SCAN_RE.search(text)
    if not match:
        return None
    return match.group(1), float(match.group(2))
