import subprocess

# Overwritten by the release build
__version__ = "test"

def get_version() -> str:
    """
    Returns the current version of homeport.
    Priorities:
    1. Explicitly set __version__ (if not "test")
    2. Short git commit hash (if inside a git checkout)
    3. Fallback "test"
    """
    if __version__ != "test":
        return __version__

    try:
        cmd = ["git", "rev-parse", "--short", "HEAD"]
        result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=5)
        return result.stdout.strip()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        pass

    return "test"
