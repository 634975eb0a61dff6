import os

class Config:
    # External command bounds (seconds)
    command_timeout = float(os.getenv("HOMEPORT_COMMAND_TIMEOUT", "60"))
    probe_timeout = float(os.getenv("HOMEPORT_PROBE_TIMEOUT", "30"))

    # Task ledger
    max_finished_tasks = int(os.getenv("HOMEPORT_MAX_FINISHED_TASKS", "100"))

    # Host paths
    mdadm_conf_path = os.getenv("HOMEPORT_MDADM_CONF", "/etc/mdadm/mdadm.conf")
    mdstat_path = os.getenv("HOMEPORT_MDSTAT_PATH", "/proc/mdstat")

    zfs_compression = os.getenv("HOMEPORT_ZFS_COMPRESSION", "lz4")

    # API / CLI
    cors_origins = [
        origin.strip()
        for origin in os.getenv("HOMEPORT_CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ]
    log_level = os.getenv("HOMEPORT_LOG_LEVEL", "INFO").upper()

config = Config()
