"""Host checks run before the TUI starts."""

import os
from pathlib import Path

import psutil
import structlog

log = structlog.get_logger()

OSRELEASE_PATH = Path("/proc/sys/kernel/osrelease")

# smaps_rollup appeared in Linux 4.14
MIN_KERNEL = (4, 14)


class PreflightError(Exception):
    """The host cannot run memlens."""


def check_platform() -> None:
    """Raise PreflightError unless running on Linux."""
    if not psutil.LINUX:
        raise PreflightError(
            "memlens only runs on Linux: it needs the /proc filesystem and kernel 4.14+"
        )


def check_privileges() -> None:
    """Raise PreflightError unless running as root.

    smaps_rollup of other users' processes is only readable by root.
    """
    if os.geteuid() != 0:
        raise PreflightError("memlens requires root privileges. Please run with sudo.")


def parse_kernel_version(release: str) -> tuple[int, int] | None:
    """Extract (major, minor) from a release string such as ``6.8.0-45-generic``."""
    parts = release.strip().split(".")
    if len(parts) < 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def check_kernel_version(osrelease_path: Path = OSRELEASE_PATH) -> str | None:
    """Return a warning if the kernel predates smaps_rollup, else None."""
    try:
        release = osrelease_path.read_text()
    except OSError:
        release = "0.0.0"

    version = parse_kernel_version(release)
    if version is None or version >= MIN_KERNEL:
        return None

    major, minor = version
    log.warning("kernel_too_old", major=major, minor=minor)
    return (
        f"Kernel version {major}.{minor} detected. memlens requires Linux 4.14+ "
        "for smaps_rollup support; some features may not work correctly."
    )


def run_checks(osrelease_path: Path = OSRELEASE_PATH) -> list[str]:
    """Run all checks, returning non-fatal warnings.

    Raises:
        PreflightError: If the platform or privileges are unsuitable.
    """
    check_platform()
    check_privileges()

    warnings = []
    kernel_warning = check_kernel_version(osrelease_path)
    if kernel_warning:
        warnings.append(kernel_warning)
    return warnings
