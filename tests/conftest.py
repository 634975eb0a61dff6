import json

import pytest

from homeport.storage.commands import CommandResult, CommandRunner


class FakeRunner(CommandRunner):
    """
    Stands in for the host tools. Responses are keyed by argv prefix; the
    longest matching prefix wins and anything unknown succeeds silently.
    """

    def __init__(self, responses=None, tools=("mdadm", "zpool"), files=None):
        super().__init__(timeout=60)
        self.responses = dict(responses or {})
        self.tools = set(tools)
        self.files = dict(files or {})
        self.calls = []

    async def run(self, args, timeout=None):
        self.calls.append(list(args))
        for length in range(len(args), 0, -1):
            response = self.responses.get(tuple(args[:length]))
            if response is not None:
                return response(args) if callable(response) else response
        return CommandResult(0, "", "")

    def which(self, name):
        return f"/usr/sbin/{name}" if name in self.tools else None

    def read_text(self, path):
        return self.files.get(path, "")

    def append_text(self, path, text):
        self.files[path] = self.files.get(path, "") + text

    def commands(self, program):
        return [call for call in self.calls if call[0] == program]


LSBLK_DEVICES = [
    {"name": "loop0", "path": "/dev/loop0", "size": 65536000, "model": None, "serial": None,
     "fstype": "squashfs", "mountpoint": "/snap/core/1", "type": "loop", "pkname": None},
    {"name": "sda", "path": "/dev/sda", "size": 500107862016, "model": "Samsung SSD 850",
     "serial": "S21JNSAG123456", "fstype": None, "mountpoint": None, "type": "disk", "pkname": None,
     "children": [
         {"name": "sda1", "path": "/dev/sda1", "size": 536870912, "model": None, "serial": None,
          "fstype": "vfat", "mountpoint": "/boot/efi", "type": "part", "pkname": "sda"},
         {"name": "sda2", "path": "/dev/sda2", "size": 499570991104, "model": None, "serial": None,
          "fstype": "ext4", "mountpoint": "/", "type": "part", "pkname": "sda"},
     ]},
    {"name": "sdb", "path": "/dev/sdb", "size": 4000787030016, "model": "WD Red",
     "serial": "WD-WCC4E1234567", "fstype": None, "mountpoint": None, "type": "disk", "pkname": None},
    {"name": "sdc", "path": "/dev/sdc", "size": 4000787030016, "model": "WD Red",
     "serial": "WD-WCC4E7654321", "fstype": None, "mountpoint": None, "type": "disk", "pkname": None},
    {"name": "sdd", "path": "/dev/sdd", "size": 2000398934016, "model": "ST2000DM008",
     "serial": "ZFL1ABCD", "fstype": "linux_raid_member", "mountpoint": None, "type": "disk", "pkname": None,
     "children": [
         {"name": "md0", "path": "/dev/md0", "size": 2000263643136, "model": None, "serial": None,
          "fstype": "ext4", "mountpoint": "/srv/data", "type": "raid1", "pkname": "sdd"},
     ]},
    {"name": "sde", "path": "/dev/sde", "size": 1000204886016, "model": "CT1000MX500",
     "serial": "2010E1234", "fstype": None, "mountpoint": None, "type": "disk", "pkname": None,
     "children": [
         {"name": "sde1", "path": "/dev/sde1", "size": 1000194400256, "model": None, "serial": None,
          "fstype": "zfs_member", "mountpoint": None, "type": "part", "pkname": "sde"},
     ]},
    {"name": "sdf", "path": "/dev/sdf", "size": 1000204886016, "model": "CT1000MX500",
     "serial": "2010E5678", "fstype": None, "mountpoint": None, "type": "disk", "pkname": None,
     "children": [
         {"name": "sdf1", "path": "/dev/sdf1", "size": 1000194400256, "model": None, "serial": None,
          "fstype": "ext4", "mountpoint": None, "type": "part", "pkname": "sdf"},
     ]},
]

LSBLK_OUTPUT = json.dumps({"blockdevices": LSBLK_DEVICES})

MDSTAT = """Personalities : [raid1] [linear] [multipath] [raid0] [raid6] [raid5] [raid4] [raid10]
md0 : active raid1 sdd[0] sdg[1]
      1953382464 blocks super 1.2 [2/2] [UU]
      bitmap: 0/15 pages [0KB], 65536KB chunk

unused devices: <none>
"""

ZPOOL_STATUS = """  pool: tank
 state: ONLINE
  scan: scrub repaired 0B in 00:00:02 with 0 errors on Sun Oct 11 00:24:03 2026
config:

\tNAME          STATE     READ WRITE CKSUM
\ttank          ONLINE       0     0     0
\t  /dev/sde1   ONLINE       0     0     0

errors: No known data errors
"""

MDADM_SCAN = "ARRAY /dev/md/data1 metadata=1.2 name=nas:data1 UUID=3aa4b1c2:5d6e7f80:91a2b3c4:d5e6f708\n"


def host_responses():
    return {
        ("lsblk",): CommandResult(0, LSBLK_OUTPUT, ""),
        ("zpool", "status", "-P"): CommandResult(0, ZPOOL_STATUS, ""),
        ("zpool", "list", "-H", "-o", "name,size,alloc,free,health"): CommandResult(
            0, "tank\t928G\t1.20G\t927G\tONLINE\n", ""
        ),
        ("zpool", "list", "-H", "-o", "name"): CommandResult(0, "tank\n", ""),
        ("mdadm", "--detail", "--scan"): CommandResult(0, MDADM_SCAN, ""),
    }


@pytest.fixture
def fake_runner():
    """A host with a system disk, two blank disks, an md member and a ZFS member."""
    from homeport.config.settings import config

    return FakeRunner(responses=host_responses(), files={config.mdstat_path: MDSTAT})


@pytest.fixture
def runner_factory():
    return FakeRunner
