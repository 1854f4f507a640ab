"""Wrappers around the system tools the checks rely on

DiskTools is the only place that runs external commands. Query methods
return None or empty data when a tool fails and leave the decision to the
caller; pool_status raises instead, because membership must be proven. The
text parsers below are kept separate so they can be tested against captured
tool output.
"""

from __future__ import annotations

import json
import os
import re
import stat
import subprocess
from pathlib import Path
from typing import Any

from .errors import MissingToolError, PoolQueryFailed, PrivilegeError

BY_ID_DIR = Path("/dev/disk/by-id")

REQUIRED_TOOLS = ["smartctl", "hdparm", "zpool", "badblocks", "wipefs", "blockdev", "lsblk"]

SELF_TEST_RUNNING = "Self-test routine in progress"

ZONED_MODELS = ("host-managed", "host-aware")

VDEV_TYPES = {
    "mirror",
    "raidz",
    "raidz1",
    "raidz2",
    "raidz3",
    "draid",
    "spare",
    "spares",
    "cache",
    "caches",
    "log",
    "logs",
    "dedup",
    "special",
}


# =============================================================================
# Utility Functions
# =============================================================================


def run_command(cmd: list[str], check: bool = True, timeout: int = 30) -> subprocess.CompletedProcess:
    """Run shell command and return result"""
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=check, timeout=timeout)
        return result
    except subprocess.CalledProcessError as e:
        if check:
            raise
        return e


def which(program: str) -> bool:
    """Check if program exists in PATH"""
    result = subprocess.run(["which", program], capture_output=True, timeout=5)
    return result.returncode == 0


def check_root() -> None:
    """Check if running as root"""
    if os.geteuid() != 0:
        raise PrivilegeError("This script must be run as root.")


def check_tools(tools: list[str] = REQUIRED_TOOLS) -> None:
    """Check required tools are installed"""
    missing_tools = [tool for tool in tools if not which(tool)]

    if missing_tools:
        raise MissingToolError(f"Missing required tools: {', '.join(missing_tools)}")


# =============================================================================
# Output Parsing
# =============================================================================


def parse_pool_vdevs(status_output: str) -> list[str]:
    """Extract vdev names from the config sections of ``zpool status``"""
    devices = []
    in_config = False
    pool_name_next = False

    for line in status_output.splitlines():
        stripped = line.strip()

        if stripped.startswith("config:"):
            in_config = True
            continue
        if stripped.startswith(("errors:", "pool:")):
            in_config = False
            continue
        if not in_config or not stripped:
            continue

        parts = stripped.split()
        if parts[0] == "NAME" and "STATE" in parts:
            # First row after the header is the pool itself
            pool_name_next = True
            continue
        if pool_name_next:
            pool_name_next = False
            continue

        name = parts[0]
        if name in VDEV_TYPES or re.fullmatch(r"(mirror|raidz\d?|draid\d?|replacing|spare)(-\d+|:.*)?", name):
            continue
        devices.append(name)

    return devices


def vdev_matches(vdev: str, identifier: str) -> bool:
    """Return True if vdev is the identifier or one of its partitions"""
    if vdev == identifier:
        return True
    if not vdev.startswith(identifier):
        return False
    suffix = vdev[len(identifier):]
    # nvme0n1 partitions are nvme0n1pN; sdb partitions are sdbN
    partition = r"-part\d+|p\d+" if identifier[-1:].isdigit() else r"-part\d+|\d+"
    return re.fullmatch(partition, suffix) is not None


def find_running_self_test(smart_output: str) -> str | None:
    """Return the 'Self-test routine in progress' line, if any"""
    for line in smart_output.splitlines():
        if SELF_TEST_RUNNING in line:
            return line.strip()
    return None


def parse_smart_identity(smart_json: str) -> tuple[str, str]:
    """Return (model, rotation) from ``smartctl -i -j`` output"""
    try:
        data: dict[str, Any] = json.loads(smart_json)
    except (json.JSONDecodeError, TypeError):
        return "unknown", "unknown"
    if not isinstance(data, dict):
        return "unknown", "unknown"

    model = data.get("model_name") or data.get("scsi_model_name") or "unknown"

    rotation_rate = data.get("rotation_rate")
    if isinstance(rotation_rate, int) and rotation_rate > 0:
        rotation = f"{rotation_rate} rpm"
    elif rotation_rate == 0:
        rotation = "Solid State Device"
    else:
        rotation = "unknown"

    return str(model).strip(), rotation


def parse_write_bytes(io_text: str) -> int | None:
    """Read write_bytes from the contents of /proc/<pid>/io"""
    for line in io_text.splitlines():
        key, _, value = line.partition(":")
        if key.strip() == "write_bytes":
            try:
                return int(value.strip())
            except ValueError:
                return None
    return None


# =============================================================================
# Disk Tools
# =============================================================================


class DiskTools:
    """External capabilities used by the validation stages"""

    def __init__(self, by_id_dir: Path = BY_ID_DIR, proc_dir: Path = Path("/proc")) -> None:
        self.by_id_dir = by_id_dir
        self.proc_dir = proc_dir

    # Device identity

    def is_block_device(self, path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False

    def resolve(self, path: str) -> str:
        return os.path.realpath(path)

    def find_persistent_alias(self, canonical_path: str) -> str | None:
        """Return the first by-id link that resolves to canonical_path"""
        try:
            links = sorted(self.by_id_dir.iterdir())
        except OSError:
            return None

        for link in links:
            try:
                if os.path.realpath(link) == canonical_path:
                    return str(link)
            except (OSError, RuntimeError):
                continue
        return None

    def list_block_devices(self) -> str:
        try:
            result = run_command(["lsblk"], check=False)
        except (subprocess.SubprocessError, OSError):
            return ""
        return result.stdout if result.returncode == 0 else ""

    def capacity_bytes(self, device: str) -> int:
        result = run_command(["blockdev", "--getsize64", device])
        return int(result.stdout.strip())

    # Pools

    def pool_status(self) -> str:
        """Return ``zpool status -P`` output

        Raises PoolQueryFailed unless zpool ran and exited 0, since a failed
        query says nothing about membership.
        """
        try:
            result = run_command(["zpool", "status", "-P"], check=False)
        except (subprocess.SubprocessError, OSError) as e:
            raise PoolQueryFailed(f"Could not query pool status: {e}") from e
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip() or f"exit status {result.returncode}"
            raise PoolQueryFailed(f"Could not query pool status: {detail}")
        return result.stdout

    # Media queries

    def zoned_model(self, device: str) -> str | None:
        try:
            result = run_command(["lsblk", "-d", "-n", "-o", "ZONED", device], check=False)
        except (subprocess.SubprocessError, OSError):
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def hdparm_identify(self, device: str) -> str:
        try:
            result = run_command(["hdparm", "-I", device], check=False)
        except (subprocess.SubprocessError, OSError):
            return ""
        return result.stdout

    def reports_zoned(self, device: str) -> bool:
        """Return True if either lsblk or hdparm reports a zoned device"""
        if self.zoned_model(device) in ZONED_MODELS:
            return True
        return "zoned" in self.hdparm_identify(device).lower()

    def smart_identity(self, device: str) -> tuple[str, str]:
        try:
            result = run_command(["smartctl", "-i", "-j", device], check=False)
        except (subprocess.SubprocessError, OSError):
            return "unknown", "unknown"
        # smartctl uses a bitmask exit status, so parse whatever it printed
        return parse_smart_identity(result.stdout)

    # SMART self-tests

    def smart_report(self, device: str) -> str:
        try:
            result = run_command(["smartctl", "-a", device], check=False)
        except (subprocess.SubprocessError, OSError):
            return ""
        return result.stdout

    def running_self_test(self, device: str) -> str | None:
        return find_running_self_test(self.smart_report(device))

    def start_self_test(self, device: str, kind: str) -> subprocess.CompletedProcess:
        return run_command(["smartctl", "-t", kind, device], check=False)

    # Destructive operations

    def badblocks_command(self, device: str, block_size: int) -> list[str]:
        return ["badblocks", "-b", str(block_size), "-wsv", device]

    def read_write_bytes(self, pid: int) -> int | None:
        try:
            io_text = (self.proc_dir / str(pid) / "io").read_text()
        except OSError:
            return None
        return parse_write_bytes(io_text)

    def wipe_signatures(self, device: str) -> subprocess.CompletedProcess:
        return run_command(["wipefs", "-af", device], check=False, timeout=120)
